"""
The loader's fetch plan and its adapter to the registry.

The registry's declared graph records what published modules *say* they
depend on. The fetch plan records what the loader has been *told* to
fetch: a locator and dependency list per ModuleId, supplied ahead of time
through ``DynamicLoader.register_module``. ``PlanAdapter`` is the single
place the two are combined.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from dataclasses import dataclass, field
import logging

from .ids import ModuleId
from .locators import LocatorResolver
from .registry import ModuleRegistry

logger = logging.getLogger("modulary.plan")


@dataclass
class PlannedModule:
    """Declarative fetch record for one module."""

    module_id: ModuleId
    locator: str
    dependencies: List[ModuleId] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


class FetchPlan:
    """Locator and dependency records keyed by ModuleId."""

    def __init__(self):
        self._entries: Dict[ModuleId, PlannedModule] = {}

    def register(
        self,
        module_id: Union[ModuleId, str],
        locator: str,
        dependencies: List[Union[ModuleId, str]] = (),
        options: Optional[Dict[str, Any]] = None,
    ) -> PlannedModule:
        """
        Add or extend a record.

        Repeat calls merge dependency lists. A different locator for the
        same id is logged and ignored.
        """
        module_id = ModuleId.coerce(module_id)
        deps = [ModuleId.coerce(dep) for dep in dependencies]

        entry = self._entries.get(module_id)
        if entry is None:
            entry = PlannedModule(
                module_id=module_id,
                locator=locator,
                dependencies=list(dict.fromkeys(deps)),
                options=dict(options or {}),
            )
            self._entries[module_id] = entry
            logger.debug(f"Planned {module_id} at {locator}")
            return entry

        if entry.locator != locator:
            logger.warning(
                f"Module {module_id} already planned at {entry.locator}; "
                f"ignoring locator {locator}"
            )
        for dep in deps:
            if dep not in entry.dependencies:
                entry.dependencies.append(dep)
        if options:
            entry.options.update(options)
        return entry

    def get(self, module_id: ModuleId) -> Optional[PlannedModule]:
        return self._entries.get(module_id)

    def by_locator(self, locator: str) -> Optional[PlannedModule]:
        for entry in self._entries.values():
            if entry.locator == locator:
                return entry
        return None

    def dependencies_of(self, module_id: ModuleId) -> List[ModuleId]:
        entry = self._entries.get(module_id)
        return list(entry.dependencies) if entry else []

    def __iter__(self) -> Iterator[PlannedModule]:
        return iter(list(self._entries.values()))

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class PlanAdapter:
    """Answers loader questions by combining the plan with the registry."""

    def __init__(self, plan: FetchPlan, registry: ModuleRegistry, resolver: LocatorResolver):
        self.plan = plan
        self.registry = registry
        self.resolver = resolver

    def module_id_for(self, resolved: str) -> Optional[ModuleId]:
        """ModuleId of a locator: planned entries first, path convention second."""
        entry = self.plan.by_locator(resolved)
        if entry is not None:
            return entry.module_id
        return self.resolver.module_id_for(resolved)

    def declared_dependencies(self, module_id: ModuleId) -> List[ModuleId]:
        """Planned dependencies followed by registry-declared ones, deduplicated."""
        deps = self.plan.dependencies_of(module_id)
        deps += self.registry.get_dependencies(module_id.namespace, module_id.name)
        return list(dict.fromkeys(deps))

    def locator_for(self, module_id: ModuleId) -> Optional[str]:
        entry = self.plan.get(module_id)
        return entry.locator if entry else None

    def pending_dependencies(self, module_id: ModuleId) -> List[Tuple[ModuleId, Optional[str]]]:
        """
        Dependencies the registry does not yet have, with their planned
        locator (None when the plan does not know one).
        """
        pending = []
        for dep in self.declared_dependencies(module_id):
            if self.registry.is_loaded(dep.namespace, dep.name):
                continue
            pending.append((dep, self.locator_for(dep)))
        return pending

    def options_for(self, module_id: ModuleId) -> Dict[str, Any]:
        entry = self.plan.get(module_id)
        return dict(entry.options) if entry else {}
