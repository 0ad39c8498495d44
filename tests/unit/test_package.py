"""Tests for cal-sync package structure and imports."""

from __future__ import annotations

import re
import subprocess
import sys


def test_package_is_importable() -> None:
    """``import cal_sync`` must succeed without errors."""
    import cal_sync  # noqa: F401


def test_package_has_version() -> None:
    """``cal_sync.__version__`` must be defined."""
    import cal_sync

    assert hasattr(cal_sync, "__version__")
    assert cal_sync.__version__ == "0.1.0"


def test_package_version_is_semver() -> None:
    """Version string must match semantic versioning format."""
    import cal_sync

    assert re.match(r"^\d+\.\d+\.\d+$", cal_sync.__version__)


def test_main_module_help() -> None:
    """``python -m cal_sync --help`` must run and exit cleanly."""
    result = subprocess.run(
        [sys.executable, "-m", "cal_sync", "--help"],
        capture_output=True,
        text=True,
        timeout=30,
    )
    assert result.returncode == 0
    assert "check-config" in result.stdout
    assert "Traceback" not in result.stderr


def test_calendar_subpackage_exports() -> None:
    """The sync components are importable from ``cal_sync.calendar``."""
    from cal_sync.calendar import (  # noqa: F401
        CalendarCatalog,
        CredentialVault,
        EventFetcher,
        ImportEngine,
        detect_conflicts,
        normalize_event,
    )


def test_config_module_importable() -> None:
    """Core config exports must be importable."""
    from cal_sync.config import ConfigError, load_settings  # noqa: F401


def test_logging_module_importable() -> None:
    """Core logging exports must be importable."""
    from cal_sync.log import redact, setup_logging  # noqa: F401
