"""Tests for guest-OS path helpers."""

import pytest

from vmfleet.models import OSType
from vmfleet.oshelp import lite_engine_log_path


@pytest.mark.parametrize(
    "os_type, expected",
    [
        (OSType.LINUX, "/var/log/lite-engine.log"),
        (OSType.WINDOWS, "C:\\Program Files\\lite-engine\\log.out"),
        (OSType.DARWIN, "/Users/anka/lite-engine.log"),
        ("windows", "C:\\Program Files\\lite-engine\\log.out"),
    ],
)
def test_lite_engine_log_path(os_type, expected):
    assert lite_engine_log_path(os_type) == expected


def test_unknown_os_rejected():
    with pytest.raises(ValueError):
        lite_engine_log_path("plan9")
