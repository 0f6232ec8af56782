"""
Shared test fixtures and helpers for the Modulary test suite.
"""

import asyncio
import pytest
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from modulary.config import LoaderConfig
from modulary.loader import DynamicLoader
from modulary.registry import ModuleRegistry


# ============================================================================
# Sources
# ============================================================================


class RecordingSource:
    """
    In-memory source that records every fetch.

    ``units`` maps resolved locators to units, or to exceptions to raise.
    ``gate`` (if set) is awaited before each fetch completes so tests can
    hold loads in flight.
    """

    def __init__(self, units: Optional[Dict[str, Any]] = None, log: Optional[List[str]] = None):
        self.units: Dict[str, Any] = dict(units or {})
        self.calls: List[str] = []
        self.log = log if log is not None else []
        self.gate: Optional[asyncio.Event] = None
        self.delay: float = 0

    async def fetch(self, locator: str) -> Any:
        self.calls.append(locator)
        self.log.append(f"fetch:{locator}")
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if locator not in self.units:
            raise FileNotFoundError(f"No unit for {locator}")
        unit = self.units[locator]
        if isinstance(unit, BaseException):
            raise unit
        return unit

    def count(self, locator: str) -> int:
        return self.calls.count(locator)


def make_unit(name: str, log: Optional[List[str]] = None, **attrs: Any) -> SimpleNamespace:
    """A unit whose ``init`` hook appends ``init:<name>`` to ``log``."""
    unit = SimpleNamespace(name=name, init_calls=0, **attrs)

    def init():
        unit.init_calls += 1
        if log is not None:
            log.append(f"init:{name}")

    unit.init = init
    return unit


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def registry():
    return ModuleRegistry()


@pytest.fixture
def log():
    return []


@pytest.fixture
def source(log):
    return RecordingSource(log=log)


@pytest.fixture
def loader_config():
    return LoaderConfig(timeout=1.0, max_retries=2, retry_delay=0)


@pytest.fixture
def loader(registry, source, loader_config):
    return DynamicLoader(registry, source, loader_config)
