"""VM decommissioning: tear down the instance bound to one stage.

One attempt (``CleanupCoordinator.run``):
  1. Validate the request (empty stage id → BadRequestError, no side effects)
  2. Look up the stage owner record to learn the owning pool
  3. Look up the live instance bound to the stage
  4. Best-effort in-guest cleanup, which also returns execution stats
  5. Classify and export the stats (observational only)
  6. Terminate the instance
  7. Retire the stage state entry and the owner record

Steps 2, 3 and 6 are FATAL: they abort the attempt with DestroyAttemptError.
Steps 4, 5 and the owner-record deletion in 7 are ADVISORY: failures are
logged and collected on the outcome, never raised.

The retry driver (``DestroyHandler.handle``) re-runs the attempt under
exponential backoff because a destroy can race an in-flight provision of the
same stage, whose owner record or instance may not be visible yet.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from vmfleet.agent_client import AgentClient, get_client
from vmfleet.backoff import STOP, ExponentialBackoff
from vmfleet.errors import (
    BadRequestError,
    DestroyAttemptError,
    DestroyCancelledError,
    NotFoundError,
)
from vmfleet.models import AgentDestroyRequest, CleanupRequest, ExecutionStats, Instance
from vmfleet.oshelp import lite_engine_log_path
from vmfleet.thresholds import classify_usage

if TYPE_CHECKING:
    from vmfleet.config import FleetConfig
    from vmfleet.metrics import FleetMetrics
    from vmfleet.pool import PoolManager
    from vmfleet.stage_state import StageStateRegistry
    from vmfleet.store import StageOwnerStore

logger = logging.getLogger(__name__)

# (instance, runner_name, port, mock_enabled, mock_timeout_secs, *, request_timeout)
ClientFactory = Callable[..., AgentClient]

# LogRecord attributes that caller context keys must not overwrite.
_RESERVED_LOG_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
# Fields bound by the coordinator itself.
_STAGE_LOG_KEYS = frozenset(
    {"stage_runtime_id", "pool", "api", "retry_count", "instance_id", "instance_name"}
)


# ── Step results ─────────────────────────────────────────────────────────────


class StepSeverity(str, enum.Enum):
    FATAL = "fatal"  # aborts the attempt, drives the next retry
    ADVISORY = "advisory"  # logged only


@dataclass
class StepFailure:
    step: str
    severity: StepSeverity
    error: BaseException


@dataclass
class DestroyOutcome:
    """Result of a successful decommission."""

    instance: Instance
    advisories: list[StepFailure] = field(default_factory=list)

    def advise(self, step: str, error: BaseException) -> None:
        self.advisories.append(StepFailure(step, StepSeverity.ADVISORY, error))


def _fatal(step: str, error: BaseException, message: str) -> DestroyAttemptError:
    return DestroyAttemptError(StepFailure(step, StepSeverity.FATAL, error), f"{message}: {error}")


# ── Logging ──────────────────────────────────────────────────────────────────


class StageLogAdapter(logging.LoggerAdapter):
    """Attaches stage fields to every record, both as ``extra`` and in the message."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        fields = {**self.extra, **kwargs.get("extra", {})}
        kwargs["extra"] = fields
        rendered = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{msg} [{rendered}]", kwargs

    def bind(self, **fields: Any) -> StageLogAdapter:
        return StageLogAdapter(self.logger, {**self.extra, **fields})


def _context_fields(context: dict[str, str]) -> dict[str, str]:
    return {
        (f"ctx_{k}" if k in _RESERVED_LOG_KEYS or k in _STAGE_LOG_KEYS else k): v
        for k, v in context.items()
        if v
    }


def validate_request(request: CleanupRequest) -> None:
    if not request.stage_runtime_id:
        raise BadRequestError("mandatory field 'stage_runtime_id' in the request body is empty")


# ── Coordinator ──────────────────────────────────────────────────────────────


class CleanupCoordinator:
    """Executes exactly one destroy attempt."""

    def __init__(
        self,
        *,
        store: StageOwnerStore,
        pool: PoolManager,
        stage_state: StageStateRegistry,
        metrics: FleetMetrics,
        config: FleetConfig,
        client_factory: ClientFactory = get_client,
    ):
        self.store = store
        self.pool = pool
        self.stage_state = stage_state
        self.metrics = metrics
        self.config = config
        self._client_factory = client_factory
        # Guest cleanups that outlived a cancelled caller.
        self._orphaned: set[asyncio.Task] = set()

    async def run(self, request: CleanupRequest, retry_count: int = 0) -> DestroyOutcome:
        validate_request(request)
        stage_id = request.stage_runtime_id

        try:
            owner = await self.store.find(stage_id)
        except Exception as e:
            raise _fatal(
                "find_owner", e, f"failed to find stage owner entity for stage: {stage_id}"
            ) from e
        if owner is None:
            raise _fatal(
                "find_owner",
                NotFoundError(f"no stage owner entity for stage: {stage_id}"),
                f"failed to find stage owner entity for stage: {stage_id}",
            )
        pool_id = owner.pool_name

        log = StageLogAdapter(
            logger,
            {
                **_context_fields(request.context),
                "stage_runtime_id": stage_id,
                "pool": pool_id,
                "api": "destroy",
                "retry_count": retry_count,
            },
        )
        log.debug("starting the destroy process")

        try:
            inst = await self.pool.get_instance_by_stage_id(pool_id, stage_id)
        except Exception as e:
            raise _fatal("find_instance", e, "cannot get the instance by tag") from e
        if inst is None:
            raise _fatal(
                "find_instance",
                NotFoundError(f"instance with stage runtime ID {stage_id} not found"),
                "cannot get the instance by tag",
            )

        log = log.bind(instance_id=inst.id, instance_name=inst.name)
        outcome = DestroyOutcome(instance=inst)

        stats = await self._guest_cleanup(request, inst, log, outcome)
        if stats is not None:
            self._record_stats(pool_id, inst, stats, log, outcome)

        log.debug("destroying instance")
        try:
            await self.pool.destroy(pool_id, inst.id)
        except Exception as e:
            raise _fatal("terminate", e, "cannot destroy the instance") from e
        log.info("destroyed instance")

        self.stage_state.delete(stage_id)

        try:
            await self.store.delete(stage_id)
        except Exception as e:
            # The VM is already terminated here, so this step is never retried.
            outcome.advise("delete_owner", e)
            log.error("failed to delete stage owner entity: %s", e)

        return outcome

    # ── Best-effort steps ────────────────────────────────────────────────

    async def _guest_cleanup(
        self,
        request: CleanupRequest,
        inst: Instance,
        log: StageLogAdapter,
        outcome: DestroyOutcome,
    ) -> ExecutionStats | None:
        """Ask the in-guest agent to clean up. Never raises (except on caller cancel).

        The call runs in its own task with its own timeout, and is shielded so a
        cancelled caller does not stop it from being tried.
        """
        le_cfg = self.config.lite_engine
        log.debug("invoking lite engine cleanup")
        try:
            client = self._client_factory(
                inst,
                self.config.runner.name,
                inst.port if inst.port is not None else le_cfg.port,
                le_cfg.enable_mock,
                le_cfg.mock_step_timeout_secs,
                request_timeout=le_cfg.request_timeout,
            )
        except Exception as e:
            outcome.advise("agent_client", e)
            log.error("could not create lite engine client for invoking cleanup: %s", e)
            return None

        agent_request = AgentDestroyRequest(
            log_drone=False,
            log_key=request.log_key,
            lite_engine_path=lite_engine_log_path(inst.os),
        )
        task = asyncio.ensure_future(
            asyncio.wait_for(
                _agent_destroy(client, agent_request),
                timeout=self.config.destroy.guest_cleanup_timeout,
            )
        )
        try:
            resp = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self._orphaned.add(task)
                task.add_done_callback(self._orphan_done)
            raise
        except Exception as e:
            outcome.advise("agent_destroy", e)
            log.error("could not invoke lite engine cleanup: %s", str(e) or type(e).__name__)
            return None

        log.debug("successfully invoked lite engine cleanup")
        return resp.os_stats

    def _orphan_done(self, task: asyncio.Task) -> None:
        self._orphaned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Detached lite engine cleanup failed: %s", task.exception())

    def _record_stats(
        self,
        pool_id: str,
        inst: Instance,
        stats: ExecutionStats,
        log: StageLogAdapter,
        outcome: DestroyOutcome,
    ) -> None:
        cpu = classify_usage(stats.max_cpu_usage_pct)
        mem = classify_usage(stats.max_mem_usage_pct)

        try:
            self.metrics.observe_usage(
                pool_id=pool_id,
                os=inst.os.value,
                arch=inst.arch,
                provider=inst.provider,
                max_cpu_pct=stats.max_cpu_usage_pct,
                max_mem_pct=stats.max_mem_usage_pct,
            )
        except Exception as e:
            outcome.advise("metrics", e)
            log.warning("could not record execution stats: %s", e)

        log.debug(
            "execution stats: total_mem_mb: %.2f, cpu_cores: %d, avg_mem_usage_pct: %.2f, "
            "avg_cpu_usage_pct: %.2f, max_mem_usage_pct: %.2f, max_cpu_usage_pct: %.2f",
            stats.total_mem_mb,
            stats.cpu_cores,
            stats.avg_mem_usage_pct,
            stats.avg_cpu_usage_pct,
            stats.max_mem_usage_pct,
            stats.max_cpu_usage_pct,
            extra={**cpu.as_log_fields("cpu"), **mem.as_log_fields("mem")},
        )


async def _agent_destroy(client: AgentClient, request: AgentDestroyRequest):
    try:
        return await client.destroy(request)
    finally:
        await client.aclose()


# ── Retry driver ─────────────────────────────────────────────────────────────


class DestroyHandler:
    """Public entry point: runs the coordinator under exponential backoff."""

    def __init__(
        self,
        coordinator: CleanupCoordinator,
        backoff_factory: Callable[[], ExponentialBackoff] | None = None,
    ):
        self.coordinator = coordinator
        self._backoff_factory = backoff_factory or coordinator.config.destroy.new_backoff

    async def handle(
        self, request: CleanupRequest, cancel: asyncio.Event | None = None
    ) -> DestroyOutcome:
        """Decommission the stage's instance, retrying until success or budget exhaustion.

        Args:
            request: The cleanup request.
            cancel: Optional event; setting it interrupts the wait between attempts.

        Returns:
            DestroyOutcome for the destroyed instance.

        Raises:
            BadRequestError: Empty stage runtime id (never retried).
            DestroyCancelledError: ``cancel`` was set while waiting to retry.
            Exception: The error from the last attempt once the backoff stops.
        """
        validate_request(request)

        backoff = self._backoff_factory()
        retry_count = 0
        while True:
            try:
                return await self.coordinator.run(request, retry_count)
            except BadRequestError:
                raise
            except Exception as e:
                last_error = e
                logger.error(
                    "could not destroy VM: %s [stage_runtime_id=%s retry_count=%d]",
                    e,
                    request.stage_runtime_id,
                    retry_count,
                    extra={"stage_runtime_id": request.stage_runtime_id, "retry_count": retry_count},
                )

            duration = backoff.next_backoff()
            if duration == STOP:
                raise last_error

            if await _wait(duration, cancel):
                raise DestroyCancelledError(
                    f"destroy of stage {request.stage_runtime_id} cancelled "
                    f"after {retry_count + 1} attempt(s)"
                ) from last_error
            retry_count += 1


async def _wait(duration: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for ``duration`` seconds. Returns True if ``cancel`` fired first."""
    if cancel is None:
        await asyncio.sleep(duration)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=duration)
    except asyncio.TimeoutError:
        return False
    return True


async def handle_destroy(
    request: CleanupRequest,
    *,
    store: StageOwnerStore,
    pool: PoolManager,
    stage_state: StageStateRegistry,
    metrics: FleetMetrics,
    config: FleetConfig,
    client_factory: ClientFactory = get_client,
    cancel: asyncio.Event | None = None,
) -> DestroyOutcome:
    """Convenience wrapper building a coordinator + handler for a single request."""
    coordinator = CleanupCoordinator(
        store=store,
        pool=pool,
        stage_state=stage_state,
        metrics=metrics,
        config=config,
        client_factory=client_factory,
    )
    return await DestroyHandler(coordinator).handle(request, cancel)
