"""Client for the in-guest agent (lite engine) running inside each instance.

Only the teardown call is used by the control plane: the agent stops any
running step processes, optionally uploads its own log, and reports the
resource usage observed over the stage's lifetime.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Protocol

import httpx

from vmfleet.errors import AgentClientError
from vmfleet.models import AgentDestroyRequest, AgentDestroyResponse, Instance

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
MOCK_DESTROY_DELAY = 0.1  # seconds


class AgentClient(Protocol):
    async def destroy(self, request: AgentDestroyRequest) -> AgentDestroyResponse: ...

    async def aclose(self) -> None: ...


class LiteEngineClient:
    """Async HTTPS client for one instance's in-guest agent."""

    def __init__(
        self,
        base_url: str,
        runner_name: str,
        *,
        ca_cert: str,
        timeout: float = 30.0,
    ):
        self.base_url = base_url
        self.runner_name = runner_name
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"User-Agent": f"vmfleet/{runner_name}"},
            verify=_ssl_context(ca_cert),
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def destroy(self, request: AgentDestroyRequest) -> AgentDestroyResponse:
        """Ask the agent to clean up and report execution stats.

        Raises:
            AgentClientError: Transport failure or non-2xx response.
        """
        try:
            resp = await self._client.post(f"{API_PREFIX}/destroy", json=request.model_dump())
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AgentClientError(
                f"agent destroy failed with HTTP {e.response.status_code}: "
                f"{e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise AgentClientError(f"agent destroy request to {self.base_url} failed: {e}") from e

        if not resp.content:
            return AgentDestroyResponse()
        return AgentDestroyResponse.model_validate(resp.json())


class MockAgentClient:
    """Stand-in agent for load tests against fake pools. Reports no stats."""

    def __init__(self, instance_id: str, step_timeout_secs: int):
        self.instance_id = instance_id
        self.step_timeout_secs = step_timeout_secs

    async def aclose(self) -> None:
        return None

    async def destroy(self, request: AgentDestroyRequest) -> AgentDestroyResponse:
        await asyncio.sleep(min(MOCK_DESTROY_DELAY, self.step_timeout_secs))
        logger.debug("Mock agent destroy for instance %s", self.instance_id)
        return AgentDestroyResponse()


def _ssl_context(ca_cert: str) -> ssl.SSLContext:
    # Guests are addressed by IP; trust is anchored on the per-instance CA only.
    ctx = ssl.create_default_context(cadata=ca_cert)
    ctx.check_hostname = False
    return ctx


def get_client(
    instance: Instance,
    runner_name: str,
    port: int,
    mock_enabled: bool,
    mock_timeout_secs: int,
    *,
    request_timeout: float = 30.0,
) -> AgentClient:
    """Build an agent client for an instance.

    Raises:
        AgentClientError: The instance has no reachable address, or no usable CA.
            The agent is never called without TLS verification.
    """
    if mock_enabled:
        return MockAgentClient(instance.id, mock_timeout_secs)

    if not instance.address:
        raise AgentClientError(f"instance {instance.id} has no address")
    if not instance.ca_cert:
        raise AgentClientError(f"instance {instance.id} has no CA certificate")

    try:
        return LiteEngineClient(
            f"https://{instance.address}:{port}",
            runner_name,
            ca_cert=instance.ca_cert,
            timeout=request_timeout,
        )
    except ssl.SSLError as e:
        raise AgentClientError(f"invalid CA certificate for instance {instance.id}: {e}") from e
