"""Guest-OS specific paths used when talking to the in-guest agent."""

from __future__ import annotations

from vmfleet.models import OSType

LINUX_LITE_ENGINE_LOG = "/var/log/lite-engine.log"
DARWIN_LITE_ENGINE_LOG = "/Users/anka/lite-engine.log"
WINDOWS_LITE_ENGINE_LOG = "C:\\Program Files\\lite-engine\\log.out"


def lite_engine_log_path(os_type: OSType | str) -> str:
    """Return where the in-guest agent writes its own log on this guest OS."""
    os_type = OSType(os_type)
    if os_type is OSType.WINDOWS:
        return WINDOWS_LITE_ENGINE_LOG
    if os_type is OSType.DARWIN:
        return DARWIN_LITE_ENGINE_LOG
    return LINUX_LITE_ENGINE_LOG
