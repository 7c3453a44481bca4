"""Global pytest configuration."""

from __future__ import annotations

import asyncio
import inspect
import os

import pytest

from onguard.analyzer.metrics import metrics

# Keep tests offline even if .env points at a live model server.
os.environ.setdefault("ONGUARD_LLM_ENABLED", "false")
os.environ.setdefault("ONGUARD_REPUTATION_ENABLED", "false")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):  # type: ignore[override]
    """Run `async def` tests on a fresh event loop per test."""
    if not inspect.iscoroutinefunction(pyfuncitem.obj):
        return None
    testargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    with asyncio.Runner() as runner:
        runner.run(pyfuncitem.obj(**testargs))
    return True


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test as requiring asyncio support")


@pytest.fixture(autouse=True)
def _fresh_metrics():
    """Fusion counters are process-wide; isolate them per test."""
    metrics.reset()
    yield
    metrics.reset()
