"""Error taxonomy for the decommissioning workflow.

BadRequestError is the only error the HTTP layer maps to a client error;
everything else surfaces as a server error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vmfleet.destroy import StepFailure


class FleetError(Exception):
    """Base class for all vmfleet errors."""


class BadRequestError(FleetError):
    """Malformed request. Never retried."""


class NotFoundError(FleetError):
    """A stage owner record, instance, or pool does not exist."""


class AgentClientError(FleetError):
    """The in-guest agent client could not be built or the call failed."""


class DestroyAttemptError(FleetError):
    """A fatal step aborted one destroy attempt.

    The underlying error is available as ``__cause__`` and on ``failure.error``.
    """

    def __init__(self, failure: StepFailure, message: str):
        super().__init__(message)
        self.failure = failure

    @property
    def step(self) -> str:
        return self.failure.step


class DestroyCancelledError(FleetError):
    """The caller cancelled while the retry driver was waiting between attempts."""
