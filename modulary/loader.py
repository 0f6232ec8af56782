"""
DynamicLoader - fetches code units, satisfies their dependencies and runs
their initialization hooks.

State per resolved locator::

    UNLOADED -> LOADING -> LOADED
                       \\-> FAILED -> LOADING (retry / reload)

Concurrent requests for one locator share a single in-flight task, so a
unit is fetched and initialized once no matter how many callers race for
it. Loading state is recorded before the first suspension point.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from dataclasses import dataclass, field, replace
from enum import Enum
import asyncio
import inspect
import logging

from .config import LoaderConfig
from .errors import (
    CircularDependencyError,
    InitializationError,
    LoadTimeoutError,
    ModuleLoadError,
    RegistryError,
)
from .events import EventType
from .ids import ModuleId
from .locators import LocatorResolver
from .plan import FetchPlan, PlanAdapter, PlannedModule
from .registry import ModuleRegistry
from .sources import CodeUnitSource, materialize

logger = logging.getLogger("modulary.loader")


class LoadState(str, Enum):
    """Load states of a locator."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class LoadRecord:
    """Loader-owned state for one resolved locator."""

    locator: str
    state: LoadState = LoadState.UNLOADED
    in_flight: Optional["asyncio.Future[Any]"] = None
    retry_count: int = 0
    result: Any = None
    error: Optional[BaseException] = None
    module_id: Optional[ModuleId] = None


class DynamicLoader:
    """
    Loads code units from a ``CodeUnitSource`` in dependency order.

    Args:
        registry: Registry consulted for already-satisfied dependencies
        source: Where units come from
        config: Loader settings
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        source: CodeUnitSource,
        config: Optional[LoaderConfig] = None,
    ):
        self.registry = registry
        self.source = source
        self.config = config or LoaderConfig()
        self.resolver = LocatorResolver(
            base_url=self.config.base_url,
            aliases=self.config.aliases,
            extension=self.config.extension,
        )
        self.plan = FetchPlan()
        self.adapter = PlanAdapter(self.plan, registry, self.resolver)

        self._records: Dict[str, LoadRecord] = {}
        self._initializing: set[str] = set()
        self._initialized: set[str] = set()
        self._shims: Dict[str, Any] = {}
        self.versions: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, **options: Any) -> "DynamicLoader":
        """
        Update loader settings.

        Accepts any ``LoaderConfig`` field (``base_url``, ``aliases``,
        ``timeout``, ``max_retries``, ``retry_delay``, ``max_depth``...).
        Aliases are merged into the existing ones.
        """
        aliases = options.pop("aliases", None)
        if options:
            self.config = replace(self.config, **options)
        if aliases:
            self.config.aliases.update(aliases)

        self.resolver.base_url = self.config.base_url
        self.resolver.extension = self.config.extension
        self.resolver.aliases = dict(self.config.aliases)
        logger.debug(f"Loader configured: {self.config}")
        return self

    def set_alias(self, alias: str, path: str) -> None:
        self.config.aliases[alias] = path
        self.resolver.set_alias(alias, path)

    def set_shims(self, shims: Dict[str, Any]) -> None:
        """
        Serve locators from fixed objects or zero-argument factories
        instead of the source. Keys are resolved like any locator.
        """
        for locator, shim in shims.items():
            self._shims[self.resolver.resolve(locator)] = shim

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_module(
        self,
        locator: str,
        *,
        init: bool = True,
        force: bool = False,
        _chain: Tuple[str, ...] = (),
    ) -> Any:
        """
        Load a code unit and everything it depends on.

        Args:
            locator: Path of the unit, before alias/base/extension resolution
            init: Run the unit's ``init`` hook once loaded
            force: Refetch even if already loaded

        Returns:
            The loaded unit

        Raises:
            CircularDependencyError: The locator is already being loaded
                further up this call chain
            LoadTimeoutError, ModuleLoadError, InitializationError: After
                retries are exhausted
        """
        resolved = self.resolver.resolve(locator)
        return await self._load_resolved(resolved, init=init, force=force, chain=_chain)

    async def _load_resolved(
        self,
        resolved: str,
        *,
        init: bool = True,
        force: bool = False,
        chain: Tuple[str, ...] = (),
    ) -> Any:
        if resolved in chain:
            raise CircularDependencyError(cycle=[*chain[chain.index(resolved):]])

        record = self._records.get(resolved)
        if record is not None:
            if record.state is LoadState.LOADED and not force:
                return record.result
            if record.state is LoadState.LOADING and record.in_flight is not None:
                return await asyncio.shield(record.in_flight)

        if record is None:
            record = LoadRecord(locator=resolved)
            self._records[resolved] = record

        # Must be set before the first await so racing callers share it
        record.state = LoadState.LOADING
        record.error = None
        if force:
            self._initialized.discard(resolved)
        record.in_flight = asyncio.ensure_future(
            self._load_with_retries(record, init=init, chain=chain + (resolved,))
        )
        return await asyncio.shield(record.in_flight)

    async def load_modules(self, locators: Iterable[str]) -> Dict[str, Any]:
        """
        Load several units concurrently.

        Returns:
            Units keyed by file stem
        """
        locators = list(locators)
        units = await asyncio.gather(*(self.load_module(loc) for loc in locators))
        return {
            self.resolver.module_name(self.resolver.resolve(loc)): unit
            for loc, unit in zip(locators, units)
        }

    async def preload(self) -> Dict[str, Any]:
        """
        Load ``preload_modules`` without running init hooks.

        Failures are logged, not raised.
        """
        locators = list(self.config.preload_modules)
        if not locators:
            return {}

        results = await asyncio.gather(
            *(self.load_module(loc, init=False) for loc in locators),
            return_exceptions=True,
        )
        loaded = {}
        for loc, result in zip(locators, results):
            if isinstance(result, BaseException):
                logger.error(f"Preload of {loc} failed: {result}")
            else:
                loaded[loc] = result
        logger.info(f"Preloaded {len(loaded)}/{len(locators)} modules")
        return loaded

    def reset_module(self, locator: str) -> None:
        """Forget a locator so the next load fetches it again."""
        resolved = self.resolver.resolve(locator)
        self._records.pop(resolved, None)
        self._initialized.discard(resolved)

    async def _load_with_retries(self, record: LoadRecord, *, init: bool, chain: Tuple[str, ...]) -> Any:
        attempts = self.config.max_retries + 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                unit = await self._load_once(record, init=init, chain=chain)
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    record.retry_count += 1
                    logger.warning(
                        f"Loading {record.locator} failed (attempt {attempt}/{attempts}): "
                        f"{_short(e)}; retrying in {self.config.retry_delay:g}s"
                    )
                    await asyncio.sleep(self.config.retry_delay)
                continue

            record.state = LoadState.LOADED
            record.result = unit
            record.in_flight = None
            self._record_version(record.locator, unit)
            logger.info(f"Loaded {record.locator}")
            self.registry.notify(
                EventType.LOAD,
                {
                    "locator": record.locator,
                    "id": record.module_id.key if record.module_id else None,
                    "retries": record.retry_count,
                },
            )
            return unit

        record.state = LoadState.FAILED
        record.error = last_error
        record.in_flight = None
        logger.error(f"Giving up on {record.locator} after {attempts} attempt(s): {_short(last_error)}")
        self.registry.notify(
            EventType.ERROR,
            {
                "locator": record.locator,
                "id": record.module_id.key if record.module_id else None,
                "error": last_error,
            },
        )
        raise last_error

    async def _load_once(self, record: LoadRecord, *, init: bool, chain: Tuple[str, ...]) -> Any:
        unit = await self._fetch(record.locator)

        module_id = self.adapter.module_id_for(record.locator)
        record.module_id = module_id
        if module_id is not None:
            await self._load_module_dependencies(module_id, chain)

        if init:
            await self._initialize(record.locator, unit)
        return unit

    async def _fetch(self, resolved: str) -> Any:
        if resolved in self._shims:
            return await materialize(self._shims[resolved])

        try:
            return await asyncio.wait_for(self.source.fetch(resolved), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise LoadTimeoutError(resolved, self.config.timeout) from e
        except RegistryError:
            raise
        except Exception as e:
            raise ModuleLoadError(resolved, f"{type(e).__name__}: {e}") from e

    async def _load_module_dependencies(self, module_id: ModuleId, chain: Tuple[str, ...]) -> None:
        """
        Load pending dependencies one by one.

        Dependency failures are logged and swallowed: the dependent still
        initializes. A dependency already loading on behalf of another
        caller is waited on for at most ``timeout`` seconds, since that
        caller may itself be waiting on this module.
        """
        for dep, locator in self.adapter.pending_dependencies(module_id):
            target = locator or self.resolver.guess(dep)
            options = self.adapter.options_for(dep)
            try:
                in_flight = self._foreign_in_flight(target, chain)
                if in_flight is not None:
                    await self._wait_for_dependency(target, in_flight)
                else:
                    await self._load_resolved(target, init=options.get("init", True), chain=chain)
            except Exception as e:
                logger.warning(f"Dependency {dep} of {module_id} failed to load: {_short(e)}")

    def _foreign_in_flight(self, resolved: str, chain: Tuple[str, ...]) -> Optional["asyncio.Future[Any]"]:
        """In-flight load of ``resolved`` started outside this call chain, if any."""
        if resolved in chain:
            return None
        record = self._records.get(resolved)
        if record is None or record.state is not LoadState.LOADING:
            return None
        return record.in_flight

    async def _wait_for_dependency(self, resolved: str, in_flight: "asyncio.Future[Any]") -> Any:
        try:
            return await asyncio.wait_for(asyncio.shield(in_flight), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise LoadTimeoutError(resolved, self.config.timeout) from e

    async def _initialize(self, resolved: str, unit: Any) -> None:
        hook = getattr(unit, "init", None)
        if not callable(hook):
            return
        if resolved in self._initialized:
            logger.debug(f"{resolved} already initialized")
            return
        if resolved in self._initializing:
            logger.debug(f"{resolved} is already initializing")
            return

        self._initializing.add(resolved)
        try:
            result = hook()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise InitializationError(resolved, f"{type(e).__name__}: {e}") from e
        finally:
            self._initializing.discard(resolved)

        self._initialized.add(resolved)
        logger.debug(f"Initialized {resolved}")

    def _record_version(self, resolved: str, unit: Any) -> None:
        version = getattr(unit, "__version__", None) or getattr(unit, "version", None)
        if isinstance(version, str):
            self.versions[self.resolver.module_name(resolved)] = {
                "version": version,
                "locator": resolved,
            }

    def get_module_version(self, name: str) -> Optional[str]:
        info = self.versions.get(name)
        return info["version"] if info else None

    # ------------------------------------------------------------------
    # Declarative registration
    # ------------------------------------------------------------------

    def register_module(
        self,
        module_id: Union[ModuleId, str],
        locator: str,
        dependencies: Iterable[Union[ModuleId, str]] = (),
        options: Optional[Dict[str, Any]] = None,
    ) -> PlannedModule:
        """
        Tell the loader where a module lives and what it needs.

        Raises:
            InvalidModuleError: If the id or a dependency is not ``namespace.name``
        """
        return self.plan.register(
            module_id,
            self.resolver.resolve(locator),
            list(dependencies),
            options,
        )

    def guess_module_path(self, namespace: str, name: str) -> Optional[str]:
        """Planned locator for a module, or the ``namespace/name`` convention."""
        try:
            module_id = ModuleId(namespace, name)
        except RegistryError:
            return None
        return self.adapter.locator_for(module_id) or self.resolver.guess(module_id)

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def get_state(self, locator: str) -> LoadState:
        return self._state_of(self.resolver.resolve(locator))

    def _state_of(self, resolved: str) -> LoadState:
        record = self._records.get(resolved)
        return record.state if record else LoadState.UNLOADED

    def get_record(self, locator: str) -> Optional[LoadRecord]:
        return self._records.get(self.resolver.resolve(locator))

    def _locators_in(self, state: LoadState) -> List[str]:
        return [loc for loc, rec in self._records.items() if rec.state is state]

    @property
    def loaded(self) -> List[str]:
        return self._locators_in(LoadState.LOADED)

    @property
    def loading(self) -> List[str]:
        return self._locators_in(LoadState.LOADING)

    @property
    def failed(self) -> List[str]:
        return self._locators_in(LoadState.FAILED)

    @property
    def initializing(self) -> List[str]:
        return sorted(self._initializing)

    def _is_satisfied(self, module_id: ModuleId) -> bool:
        if self.registry.is_loaded(module_id.namespace, module_id.name):
            return True
        locator = self.adapter.locator_for(module_id)
        return locator is not None and self._state_of(locator) is LoadState.LOADED

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def check_dependency_tree(self, module_id: Union[ModuleId, str]) -> Dict[str, Any]:
        """
        Walk the fetch plan from a module.

        Nodes carry ``circular``, ``missing`` and ``too_deep`` markers. Used
        for reporting only.

        Returns:
            ``{"tree": node, "circular": [cycle, ...]}``
        """
        root = ModuleId.coerce(module_id)
        cycles: List[List[str]] = []

        def visit(node: ModuleId, path: List[ModuleId], depth: int) -> Dict[str, Any]:
            entry = self.plan.get(node)
            info: Dict[str, Any] = {
                "id": node.key,
                "locator": entry.locator if entry else None,
                "dependencies": [],
                "circular": False,
                "missing": entry is None,
                "too_deep": False,
            }
            if node in path:
                info["circular"] = True
                cycles.append([n.key for n in path[path.index(node):]] + [node.key])
                return info
            if depth >= self.config.max_depth:
                info["too_deep"] = True
                return info
            if entry is None:
                return info

            for dep in entry.dependencies:
                info["dependencies"].append(visit(dep, path + [node], depth + 1))
            return info

        return {"tree": visit(root, [], 0), "circular": cycles}

    def diagnose(self) -> Dict[str, Any]:
        """
        Cross-reference the plan, load state and registry.

        A declared dependency is a problem when it is not loaded or not
        known to either the plan or the registry.
        """
        module_ids = [entry.module_id for entry in self.plan]
        for record in self.registry.get_modules():
            if record.id not in self.plan:
                module_ids.append(record.id)

        modules: Dict[str, Any] = {}
        for module_id in module_ids:
            problems = []
            for dep in self.adapter.declared_dependencies(module_id):
                loaded = self._is_satisfied(dep)
                registered = dep in self.plan or self.registry.is_loaded(dep.namespace, dep.name)
                if not loaded or not registered:
                    problems.append({
                        "id": dep.key,
                        "loaded": loaded,
                        "registered": registered,
                    })

            locator = self.adapter.locator_for(module_id)
            modules[module_id.key] = {
                "locator": locator,
                "loaded": self._is_satisfied(module_id),
                "state": self._state_of(locator).value if locator else None,
                "dependencies": [d.key for d in self.adapter.declared_dependencies(module_id)],
                "has_problems": bool(problems),
                "problematic_dependencies": problems,
            }

        circular = []
        for entry in self.plan:
            found = self.check_dependency_tree(entry.module_id)["circular"]
            if found:
                circular.append({"start_module": entry.module_id.key, "cycles": found})

        return {
            "registered_modules": len(self.plan),
            "loaded": self.loaded,
            "loading": self.loading,
            "failed": self.failed,
            "initializing": self.initializing,
            "modules": modules,
            "circular_dependencies": circular,
        }


def _short(error: Optional[BaseException]) -> str:
    if isinstance(error, RegistryError):
        return error.message
    return f"{type(error).__name__}: {error}"
