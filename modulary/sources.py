"""
Code unit sources.

A source turns a resolved locator into a live unit: the object a module
publishes once its code has run. The loader only depends on the
``CodeUnitSource`` protocol.
"""

from typing import Any, Callable, Dict, Optional, Protocol, Union
from pathlib import Path
import asyncio
import hashlib
import importlib
import importlib.util
import inspect
import logging
import sys

logger = logging.getLogger("modulary.sources")


class CodeUnitSource(Protocol):
    """Interface for retrieving and executing code units."""

    async def fetch(self, locator: str) -> Any:
        """
        Retrieve and execute the unit at ``locator``.

        Fetching the same locator twice must be safe.
        """
        ...


class FileSource:
    """
    Execute Python files as modules.

    Relative locators are taken from ``root``. The module body runs in a
    worker thread so a slow import does not stall the event loop, which
    means the body must not touch the registry: units publish themselves
    from their ``init`` hook, which the loader runs on the event loop.

    Executed modules are cached per path. A body is executed at most once
    at a time: a fetch that arrives while a run is in progress (a retry
    after a timeout, say) waits for that run instead of starting another.
    """

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root) if root is not None else Path.cwd()
        self._modules: Dict[Path, Any] = {}
        self._running: Dict[Path, "asyncio.Future[Any]"] = {}

    def path_for(self, locator: str) -> Path:
        path = Path(locator)
        if not path.is_absolute():
            path = self.root / path
        return path

    async def fetch(self, locator: str) -> Any:
        path = self.path_for(locator)
        if path in self._modules:
            return self._modules[path]

        running = self._running.get(path)
        if running is None:
            running = asyncio.ensure_future(asyncio.to_thread(self._exec_file, path))
            running.add_done_callback(lambda done, p=path: self._finished(p, done))
            self._running[path] = running
        # A cancelled caller must not cancel the run other callers share
        return await asyncio.shield(running)

    def _finished(self, path: Path, done: "asyncio.Future[Any]") -> None:
        self._running.pop(path, None)
        if done.cancelled() or done.exception() is not None:
            return
        self._modules[path] = done.result()

    def _exec_file(self, path: Path) -> Any:
        if not path.is_file():
            raise FileNotFoundError(f"No code unit at {path}")

        digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:8]
        module_name = f"_modulary_unit_{path.stem}_{digest}"

        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load code unit from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        logger.debug(f"Executed {path} as {module_name}")
        return module


class ImportSource:
    """
    Import dotted modules derived from locators.

    ``pkg/sub/mod.py`` imports ``pkg.sub.mod``.
    """

    def __init__(self, extension: str = ".py"):
        self.extension = extension

    def module_name(self, locator: str) -> str:
        name = locator.strip("/")
        if self.extension and name.endswith(self.extension):
            name = name[: -len(self.extension)]
        return name.replace("/", ".")

    async def fetch(self, locator: str) -> Any:
        return await asyncio.to_thread(importlib.import_module, self.module_name(locator))


class MappingSource:
    """
    In-memory units keyed by locator.

    Values are returned as-is, or called when they are factories
    (sync or async, no arguments). Handy for embedding and tests.
    """

    def __init__(self, units: Optional[Dict[str, Any]] = None):
        self.units: Dict[str, Any] = dict(units or {})

    def add(self, locator: str, unit: Union[Any, Callable[[], Any]]) -> None:
        self.units[locator] = unit

    async def fetch(self, locator: str) -> Any:
        if locator not in self.units:
            raise FileNotFoundError(f"No code unit registered for {locator}")
        return await materialize(self.units[locator])


async def materialize(unit: Any) -> Any:
    """Call factories (awaiting coroutine results); return other objects unchanged."""
    if inspect.isclass(unit) or inspect.ismodule(unit) or not callable(unit):
        return unit
    result = unit()
    if inspect.isawaitable(result):
        result = await result
    return result
