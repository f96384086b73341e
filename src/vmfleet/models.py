"""Core data models for vmfleet."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


# ── Guest platform ───────────────────────────────────────────────────────────


class OSType(str, enum.Enum):
    """Guest operating systems an instance can run."""

    LINUX = "linux"
    WINDOWS = "windows"
    DARWIN = "darwin"


# ── Destroy request ──────────────────────────────────────────────────────────


class CleanupRequest(BaseModel):
    """A request to decommission the VM bound to one stage.

    ``context`` is an opaque bag of caller fields (task id, account id, ...)
    attached to every log record of the attempt; it is never interpreted.
    """

    model_config = ConfigDict(frozen=True)

    pool_id: str = ""
    stage_runtime_id: str = Field(default="", description="Correlation key, mandatory")
    log_key: str = ""
    context: dict[str, str] = Field(default_factory=dict)


# ── Persistent records ───────────────────────────────────────────────────────


class StageOwnership(BaseModel):
    """Maps a stage to the pool that owns its instance."""

    stage_runtime_id: str
    pool_name: str


class Instance(BaseModel):
    """A provisioned VM as indexed by the pool manager."""

    id: str
    name: str
    address: str = ""
    os: OSType = OSType.LINUX
    arch: str = "amd64"
    provider: str = ""
    pool_name: str = ""
    stage_runtime_id: str | None = None
    port: int | None = None  # agent port; None means the configured default
    ca_cert: str | None = Field(default=None, description="PEM CA used by the in-guest agent")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── In-guest agent wire types ────────────────────────────────────────────────


class ExecutionStats(BaseModel):
    """Resource usage reported by the in-guest agent at teardown."""

    total_mem_mb: float = 0
    cpu_cores: int = 0
    avg_mem_usage_pct: float = 0
    avg_cpu_usage_pct: float = 0
    max_mem_usage_pct: float = 0
    max_cpu_usage_pct: float = 0


class AgentDestroyRequest(BaseModel):
    log_drone: bool = False
    log_key: str = ""
    lite_engine_path: str = ""


class AgentDestroyResponse(BaseModel):
    os_stats: ExecutionStats | None = None
