"""Pytest configuration and fixtures."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest

# Add src to path so tests run from a plain checkout as well as an editable install.
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root / "src"))

from cookimport.core.config import PollingPolicy  # noqa: E402
from cookimport.core.events import get_event_bus  # noqa: E402
from cookimport.core.log_bus import get_log_bus  # noqa: E402
from cookimport.core.logging import VerbosityLevel, set_colors, set_verbosity  # noqa: E402


def _load_fakes() -> type[object]:
    """Load fakes without turning tests/ into an importable package."""

    p = Path(__file__).resolve().parent / "fakes" / "fake_resource_api.py"
    spec = importlib.util.spec_from_file_location("_cookimport_test_fakes", p)
    assert spec and spec.loader
    mod = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = mod
    spec.loader.exec_module(mod)
    return mod.FakeResourceApiServer


FakeResourceApiServer = _load_fakes()


@pytest.fixture(autouse=True)
def _isolate_buses():
    """Keep bus subscribers and verbosity from leaking between tests."""
    get_event_bus().clear()
    get_log_bus().clear()
    set_verbosity(VerbosityLevel.NORMAL)
    set_colors(False)
    yield
    get_event_bus().clear()
    get_log_bus().clear()
    set_verbosity(VerbosityLevel.NORMAL)


@pytest.fixture
def server():
    """Scripted Resource API; owner id 'c1'."""
    return FakeResourceApiServer(owner_id="c1")


@pytest.fixture
def api(server):
    return server.api()


@pytest.fixture
def fast_policy() -> PollingPolicy:
    """Back-to-back polling with a safety bound."""
    return PollingPolicy(interval=0.0, max_attempts=50)
