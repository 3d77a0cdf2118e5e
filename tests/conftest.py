"""Shared test fixtures for reportsync.

Provides the mock backend, a store runner that executes an async scenario
in a fresh event loop, isolated config directories, and output state
management. These fixtures are discovered by pytest automatically.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional, TypeVar

import pytest

from reportsync.models import Profile, RequestConfig
from reportsync.output import OutputFormat, OutputManager, reset_output, set_output
from reportsync.scheduler import Scheduler
from reportsync.store import SyncStore
from reportsync.testing import MockBackend
from reportsync.transport import HttpTransport

from report_data import fixed_clock

T = TypeVar("T")

BASE_URL = "http://api.test"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time, which go stale once CliRunner or capture fixtures
    swap the streams.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Backend and store
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend(BASE_URL)


@pytest.fixture
def profile() -> Profile:
    """A profile pointing at the mock backend, with retries disabled."""
    return Profile(
        name="test",
        base_url=BASE_URL,
        request=RequestConfig(timeout=5, max_retries=0),
    )


@pytest.fixture
def run_store(
    backend: MockBackend, profile: Profile
) -> Callable[..., Any]:
    """Run ``scenario(store)`` in a fresh event loop and return its result.

    The store talks to ``backend`` through a real :class:`HttpTransport`
    over :class:`httpx.MockTransport`, and uses the fixed report clock.

    Example::

        snapshot = run_store(lambda store: ReportAPI(store).get_accomplished(...).first())
    """

    def run(
        scenario: Callable[[SyncStore], Awaitable[T]],
        *,
        scheduler: Optional[Callable[[], Scheduler]] = None,
    ) -> T:
        async def main() -> T:
            async with HttpTransport(profile, transport=backend.transport()) as transport:
                store = SyncStore(
                    transport,
                    clock=fixed_clock,
                    scheduler=scheduler() if scheduler else None,
                )
                return await scenario(store)

        return asyncio.run(main())

    return run


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    and clears the REPORTSYNC_* environment variables.
    """
    monkeypatch.setattr("reportsync.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["REPORTSYNC_PROFILE", "REPORTSYNC_BASE_URL"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def verbose_output() -> OutputManager:
    """Install a plain, colourless OutputManager that prints debug lines."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True)
    set_output(output)
    yield output
    reset_output()
