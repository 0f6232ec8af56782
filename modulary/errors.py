"""
Modulary error types with rich diagnostics.
"""

from typing import List, Dict, Any, Optional


class RegistryError(Exception):
    """Base error for all Modulary registry and loader errors."""

    def __init__(
        self,
        message: str,
        *,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def format_error(self) -> str:
        """Format error with rich diagnostics."""
        lines = []

        lines.append(f"❌ {self.__class__.__name__}: {self.message}")

        if self.details:
            lines.append("\n   Details:")
            for key, value in self.details.items():
                lines.append(f"   - {key}: {value}")

        if self.suggestion:
            lines.append(f"\n   💡 Suggestion: {self.suggestion}")

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format_error()


class InvalidModuleError(RegistryError):
    """
    Module identity or module object is unusable.

    Raised for empty namespaces/names, unparseable ids and
    ``None`` or scalar module objects.
    """

    def __init__(self, reason: str, *, namespace: Any = None, name: Any = None):
        self.reason = reason
        self.namespace = namespace
        self.name = name

        super().__init__(
            f"Invalid module: {reason}",
            suggestion=(
                "Modules are keyed by a non-empty namespace and name and must "
                "publish a structured object (module, class, instance or mapping)."
            ),
            details={"namespace": namespace, "name": name},
        )


class InvalidDependencyError(RegistryError):
    """
    Dependency strings are not in ``namespace.name`` form.

    Only raised when the caller opted in with
    ``require_valid_dependencies``; otherwise invalid entries are dropped.
    """

    def __init__(self, module_id: str, invalid: List[str]):
        self.module_id = module_id
        self.invalid = list(invalid)

        invalid_list = ", ".join(repr(d) for d in invalid)
        super().__init__(
            f"Module '{module_id}' declares malformed dependencies: {invalid_list}",
            suggestion="Write every dependency as 'namespace.name'.",
            details={"module": module_id, "invalid": self.invalid},
        )


class DependencyNotFoundError(RegistryError):
    """
    Declared dependencies are not registered.

    Only raised when the caller opted in with ``require_all_dependencies``.
    """

    def __init__(self, module_id: str, missing: List[str]):
        self.module_id = module_id
        self.missing = list(missing)

        missing_list = "\n".join(f"   - {m}" for m in missing)
        super().__init__(
            f"Module '{module_id}' depends on unregistered modules:\n{missing_list}",
            suggestion=(
                "Register the dependencies first, or drop "
                "require_all_dependencies to register with a warning."
            ),
            details={"module": module_id, "missing_count": len(self.missing)},
        )


class CircularDependencyError(RegistryError):
    """
    Circular dependency detected.

    Example:
        core.a depends on core.b
        core.b depends on core.c
        core.c depends on core.a  <- CYCLE
    """

    def __init__(self, cycle: List[str]):
        self.cycle = [str(node) for node in cycle]
        if self.cycle:
            cycle_repr = " → ".join(self.cycle) + f" → {self.cycle[0]}"
        else:
            cycle_repr = "<empty>"

        super().__init__(
            f"Circular dependency detected: {cycle_repr}",
            suggestion=(
                "Break the cycle by removing one dependency or introducing "
                "an intermediate module both sides can depend on."
            ),
            details={"cycle": self.cycle, "cycle_length": len(self.cycle)},
        )


class MissingModuleError(RegistryError):
    """Requested module is not registered."""

    def __init__(self, module_id: str, *, known: Optional[List[str]] = None):
        self.module_id = module_id
        self.known = known or []

        suggestion = "Register the module before looking it up."
        if self.known:
            suggestion += " Registered in this namespace: " + ", ".join(self.known)

        super().__init__(
            f"Module not found: {module_id}",
            suggestion=suggestion,
            details={"module": module_id},
        )


class LoaderError(RegistryError):
    """Base error for dynamic loading failures."""

    def __init__(self, message: str, *, locator: str, **kwargs: Any):
        self.locator = locator
        super().__init__(message, **kwargs)


class ModuleLoadError(LoaderError):
    """Code unit could not be fetched from its source."""

    def __init__(self, locator: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Failed to load {locator}: {reason}",
            locator=locator,
            suggestion="Check the locator, the loader base_url and its aliases.",
            details={"locator": locator, "reason": reason},
        )


class LoadTimeoutError(LoaderError):
    """Fetching a code unit exceeded the configured timeout."""

    def __init__(self, locator: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s loading {locator}",
            locator=locator,
            suggestion="Raise LoaderConfig.timeout or make the unit cheaper to import.",
            details={"locator": locator, "timeout": timeout},
        )


class InitializationError(LoaderError):
    """A unit's ``init`` hook raised."""

    def __init__(self, locator: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Initialization hook failed for {locator}: {reason}",
            locator=locator,
            details={"locator": locator, "reason": reason},
        )
