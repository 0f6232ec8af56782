"""
Dependency list validation.

Both checks are pure; whether a finding is fatal is decided by the caller.
"""

from typing import Iterable, List, Protocol, Union

from .ids import ModuleId, parse_id


class LoadedLookup(Protocol):
    """Anything that can answer ``is_loaded`` (the registry, in practice)."""

    def is_loaded(self, namespace: str, name: str) -> bool:
        ...


def _as_text(dep: Union[ModuleId, str]) -> str:
    return dep.key if isinstance(dep, ModuleId) else dep


class DependencyValidator:
    """Format and existence checks for declared dependency lists."""

    @staticmethod
    def validate_format(deps: Iterable[Union[ModuleId, str]]) -> List[str]:
        """
        Return entries that are not ``namespace.name``.

        Args:
            deps: Dependency strings (ModuleIds are always well-formed)

        Returns:
            Invalid entries, in input order
        """
        invalid: List[str] = []
        for dep in deps:
            if isinstance(dep, ModuleId):
                continue
            if parse_id(dep) is None:
                invalid.append(dep)
        return invalid

    @staticmethod
    def validate_existence(
        deps: Iterable[Union[ModuleId, str]],
        registry: LoadedLookup,
    ) -> List[str]:
        """
        Return entries the registry does not have loaded.

        Malformed entries are skipped here; ``validate_format`` reports them.
        """
        missing: List[str] = []
        for dep in deps:
            module_id = dep if isinstance(dep, ModuleId) else parse_id(dep)
            if module_id is None:
                continue
            if not registry.is_loaded(module_id.namespace, module_id.name):
                missing.append(_as_text(dep))
        return missing


validate_format = DependencyValidator.validate_format
validate_existence = DependencyValidator.validate_existence
