"""
ModuleRegistry - the source of truth for published modules.

Stores module objects, their declared dependencies and metadata, and
exposes dependency-graph queries plus a synchronous event bus. All
operations are synchronous; the registry never suspends.

Registration is append-only: there is no unregister, and registering an
id twice keeps the first object.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging

from .config import RegistryConfig
from .errors import (
    CircularDependencyError,
    DependencyNotFoundError,
    InvalidDependencyError,
    InvalidModuleError,
    MissingModuleError,
)
from .events import Event, EventBus, EventType
from .graph import CycleDetector, DeclaredDependencyGraph
from .ids import ModuleId, parse_id
from .validator import DependencyValidator

logger = logging.getLogger("modulary.registry")


DependencySpec = Union[ModuleId, str]

# Metadata keys the registry owns; update_metadata cannot overwrite them
_PROTECTED_METADATA = frozenset({"namespace", "name", "registered_at"})

_SCALAR_TYPES = (str, bytes, bytearray, int, float, complex, bool)


@dataclass
class ModuleRecord:
    """A published module."""

    id: ModuleId
    object: Any
    dependencies: List[ModuleId] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        return self.id.namespace

    @property
    def name(self) -> str:
        return self.id.name


@dataclass
class DependencyCheck:
    """Result of ``ModuleRegistry.load_dependencies``."""

    success: bool
    loaded_dependencies: List[str] = field(default_factory=list)
    missing_dependencies: List[str] = field(default_factory=list)


@dataclass
class SafeGetResult:
    """Result of ``ModuleRegistry.safe_get``."""

    success: bool
    module: Any = None
    dependency_result: Optional[DependencyCheck] = None


class ModuleRegistry:
    """
    Registry of named modules and their declared dependency graph.

    Construct one per host application and pass it to every subsystem
    that publishes or consumes modules.
    """

    def __init__(self, config: Optional[RegistryConfig] = None):
        self.config = config or RegistryConfig()
        self._records: Dict[ModuleId, ModuleRecord] = {}
        self._loaded: set[ModuleId] = set()
        self._graph = DeclaredDependencyGraph()
        self._events = EventBus()
        self._detector = CycleDetector(
            max_depth=self.config.max_depth,
            overflow_is_cycle=self.config.depth_overflow_is_cycle,
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        namespace: str,
        name: str,
        obj: Any,
        dependencies: Iterable[DependencySpec] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ModuleRegistry":
        """
        Publish a module.

        Args:
            namespace: Module namespace
            name: Module name
            obj: Published object (module, class, instance, mapping...)
            dependencies: Declared dependencies as ``namespace.name``
            metadata: Client metadata. ``require_valid_dependencies`` and
                ``require_all_dependencies`` make dependency problems fatal.

        Returns:
            The registry

        Raises:
            InvalidModuleError: Empty id parts or a None/scalar object
            InvalidDependencyError: Malformed dependency with require_valid_dependencies
            CircularDependencyError: The dependencies would close a cycle
            DependencyNotFoundError: Missing dependency with require_all_dependencies
        """
        module_id = ModuleId(namespace, name)
        metadata = dict(metadata or {})

        if obj is None or isinstance(obj, _SCALAR_TYPES):
            raise InvalidModuleError(
                f"module object for {module_id} must be a structured value, "
                f"got {type(obj).__name__}",
                namespace=namespace,
                name=name,
            )

        if module_id in self._records:
            logger.info(f"Module {module_id} already registered; keeping the existing one")
            return self

        deps = list(dependencies)

        invalid = DependencyValidator.validate_format(deps)
        if invalid:
            if metadata.get("require_valid_dependencies"):
                raise InvalidDependencyError(module_id.key, invalid)
            logger.warning(f"Dropping malformed dependencies of {module_id}: {invalid}")
            deps = [dep for dep in deps if dep not in invalid]

        dep_ids = _unique([ModuleId.coerce(dep) for dep in deps])

        cycle = self._detector.find_cycle(module_id, dep_ids, self._graph)
        if cycle:
            raise CircularDependencyError(cycle=cycle)

        missing = DependencyValidator.validate_existence(dep_ids, self)
        if missing and metadata.get("require_all_dependencies"):
            raise DependencyNotFoundError(module_id.key, missing)

        # Commit
        metadata.update(
            namespace=namespace,
            name=name,
            registered_at=datetime.now(timezone.utc),
            has_missing_dependencies=bool(missing),
            missing_dependencies=missing,
        )
        record = ModuleRecord(
            id=module_id,
            object=obj,
            dependencies=dep_ids,
            metadata=metadata,
        )
        self._records[module_id] = record
        self._loaded.add(module_id)
        self._graph.set_dependencies(module_id, dep_ids)

        logger.info(f"Registered module {module_id}")

        if missing:
            logger.warning(f"Module {module_id} has missing dependencies: {missing}")
            self.notify(
                EventType.DEPENDENCY_ERROR,
                {"id": module_id.key, "missing": list(missing)},
            )

        self.notify(
            EventType.REGISTER,
            {
                "id": module_id.key,
                "namespace": namespace,
                "name": name,
                "dependencies": [dep.key for dep in dep_ids],
            },
        )
        return self

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, namespace: str, name: str, throw_on_missing: bool = False) -> Any:
        """
        Return a module object.

        Raises:
            MissingModuleError: If absent and ``throw_on_missing``
        """
        record = self.get_record(namespace, name)
        if record is None:
            key = f"{namespace}.{name}"
            if throw_on_missing:
                known = [r.name for r in self.get_modules(namespace)] if namespace else []
                raise MissingModuleError(key, known=known)
            logger.warning(f"Module not found: {key}")
            return None
        return record.object

    def get_record(self, namespace: str, name: str) -> Optional[ModuleRecord]:
        module_id = _try_id(namespace, name)
        if module_id is None:
            return None
        return self._records.get(module_id)

    def is_loaded(self, namespace: str, name: str) -> bool:
        module_id = _try_id(namespace, name)
        return module_id is not None and module_id in self._loaded

    def get_modules(self, namespace: Optional[str] = None) -> List[ModuleRecord]:
        """All records, or those of one namespace, in registration order."""
        if namespace is None:
            return list(self._records.values())
        return [r for r in self._records.values() if r.namespace == namespace]

    def get_namespaces(self) -> List[str]:
        return list(dict.fromkeys(r.namespace for r in self._records.values()))

    def get_module_version(self, namespace: str, name: str) -> Optional[str]:
        record = self.get_record(namespace, name)
        if record is None:
            return None
        return record.metadata.get("version")

    def safe_get(self, namespace: str, name: str, load_deps: bool = True) -> SafeGetResult:
        """Lookup that never raises, optionally reporting dependency status."""
        if not self.is_loaded(namespace, name):
            return SafeGetResult(success=False)

        dependency_result = None
        if load_deps:
            dependency_result = self.load_dependencies(namespace, name)
            if not dependency_result.success:
                logger.warning(
                    f"Module {namespace}.{name} has unloaded dependencies: "
                    f"{dependency_result.missing_dependencies}"
                )

        module = self.get(namespace, name)
        return SafeGetResult(
            success=module is not None,
            module=module,
            dependency_result=dependency_result,
        )

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    @property
    def graph(self) -> DeclaredDependencyGraph:
        return self._graph

    def get_dependencies(self, namespace: str, name: str) -> List[ModuleId]:
        record = self.get_record(namespace, name)
        if record is None:
            return []
        return list(record.dependencies)

    def get_dependent_modules(self, namespace: str, name: str) -> List[ModuleRecord]:
        """Every record whose dependencies include this module."""
        module_id = _try_id(namespace, name)
        if module_id is None:
            return []
        return [
            self._records[dependent]
            for dependent in self._graph.dependents_of(module_id)
            if dependent in self._records
        ]

    def get_dependency_tree(self, namespace: str, name: str) -> Dict[str, Any]:
        """
        Nested dependency structure rooted at a module.

        ``update_dependencies`` only rejects one-hop cycles, so a node that
        reappears on its own branch is marked ``circular`` and not expanded.
        """
        return self._tree(ModuleId(namespace, name), ())

    def _tree(self, module_id: ModuleId, path: Tuple[ModuleId, ...]) -> Dict[str, Any]:
        node: Dict[str, Any] = {
            "id": module_id.key,
            "loaded": module_id in self._loaded,
            "dependencies": [],
        }
        if module_id in path:
            node["circular"] = True
            return node

        record = self._records.get(module_id)
        for dep in record.dependencies if record else []:
            node["dependencies"].append(self._tree(dep, path + (module_id,)))
        return node

    def update_dependencies(
        self,
        namespace: str,
        name: str,
        new_deps: Iterable[DependencySpec],
    ) -> bool:
        """
        Replace a module's declared dependencies.

        Rejects self references and any dependency whose own dependencies
        already point back at this module. Longer cycles are only caught
        when ``strict_dependency_updates`` is enabled.

        Returns:
            True if the dependencies were replaced
        """
        record = self.get_record(namespace, name)
        if record is None:
            logger.warning(f"Cannot update dependencies of unknown module {namespace}.{name}")
            return False

        deps = list(new_deps)
        invalid = DependencyValidator.validate_format(deps)
        if invalid:
            logger.warning(f"Rejected dependency update for {record.id}: malformed {invalid}")
            return False

        dep_ids = _unique([ModuleId.coerce(dep) for dep in deps])

        if record.id in dep_ids:
            logger.warning(f"Rejected dependency update for {record.id}: self reference")
            return False

        for dep in dep_ids:
            if record.id in self._graph.dependencies_of(dep):
                logger.warning(
                    f"Rejected dependency update for {record.id}: {dep} already depends on it"
                )
                return False

        if self.config.strict_dependency_updates:
            cycle = self._detector.find_cycle(record.id, dep_ids, self._graph)
            if cycle:
                logger.warning(
                    f"Rejected dependency update for {record.id}: cycle "
                    f"{' → '.join(str(n) for n in cycle)}"
                )
                return False

        missing = DependencyValidator.validate_existence(dep_ids, self)
        record.dependencies = dep_ids
        record.metadata["has_missing_dependencies"] = bool(missing)
        record.metadata["missing_dependencies"] = missing
        self._graph.set_dependencies(record.id, dep_ids)

        logger.debug(f"Updated dependencies of {record.id}: {[d.key for d in dep_ids]}")
        if missing:
            self.notify(
                EventType.DEPENDENCY_ERROR,
                {"id": record.id.key, "missing": list(missing)},
            )
        return True

    def update_metadata(self, namespace: str, name: str, fields: Dict[str, Any]) -> bool:
        """Merge client fields into a record's metadata."""
        record = self.get_record(namespace, name)
        if record is None:
            return False
        protected = _PROTECTED_METADATA & set(fields)
        if protected:
            logger.warning(f"Ignoring protected metadata keys for {record.id}: {sorted(protected)}")
        record.metadata.update(
            {k: v for k, v in fields.items() if k not in _PROTECTED_METADATA}
        )
        return True

    def load_dependencies(self, namespace: str, name: str) -> DependencyCheck:
        """
        Classify declared dependencies as loaded or missing.

        A status check only; fetching is the loader's job.
        """
        loaded: List[str] = []
        missing: List[str] = []
        for dep in self.get_dependencies(namespace, name):
            if dep in self._loaded:
                loaded.append(dep.key)
            else:
                missing.append(dep.key)
        return DependencyCheck(
            success=not missing,
            loaded_dependencies=loaded,
            missing_dependencies=missing,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, event: Union[EventType, str], callback: Callable[[Event], Any]) -> None:
        self._events.subscribe(event, callback)

    on = subscribe

    def unsubscribe(self, event: Union[EventType, str], callback: Callable[[Event], Any]) -> bool:
        return self._events.unsubscribe(event, callback)

    def notify(self, event: Union[EventType, str], payload: Dict[str, Any]) -> Event:
        """Emit an event to this registry's subscribers (used by the loader)."""
        return self._events.notify(event, payload)

    _notify = notify

    # ------------------------------------------------------------------
    # Readiness flag
    # ------------------------------------------------------------------

    def set_initialized(self, value: bool = True) -> None:
        self._initialized = bool(value)

    def is_initialized(self) -> bool:
        return self._initialized

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, module_id: object) -> bool:
        if isinstance(module_id, str):
            module_id = parse_id(module_id)
        return module_id in self._records

    def __repr__(self) -> str:
        return f"ModuleRegistry({len(self._records)} modules)"


def _try_id(namespace: str, name: str) -> Optional[ModuleId]:
    if not namespace or not name or not isinstance(namespace, str) or not isinstance(name, str):
        return None
    return ModuleId(namespace, name)


def _unique(ids: List[ModuleId]) -> List[ModuleId]:
    return list(dict.fromkeys(ids))
