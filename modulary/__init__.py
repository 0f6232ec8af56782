"""
Modulary - Module registry and dynamic loader

Registers named code units, validates and resolves their dependency
graphs, detects cycles, deduplicates concurrent loads, retries failures
and runs initialization hooks in dependency order.
"""

__version__ = "1.0.0"

from .ids import (
    ModuleId,
    make_id,
    parse_id,
)

from .errors import (
    RegistryError,
    InvalidModuleError,
    InvalidDependencyError,
    DependencyNotFoundError,
    CircularDependencyError,
    MissingModuleError,
    LoaderError,
    ModuleLoadError,
    LoadTimeoutError,
    InitializationError,
)

from .validator import (
    DependencyValidator,
    validate_format,
    validate_existence,
)

from .graph import (
    CycleDetector,
    DeclaredDependencyGraph,
)

from .events import (
    Event,
    EventBus,
    EventType,
)

from .config import (
    ConfigError,
    ConfigLoader,
    LoaderConfig,
    ModularyConfig,
    RegistryConfig,
)

from .registry import (
    DependencyCheck,
    ModuleRecord,
    ModuleRegistry,
    SafeGetResult,
)

from .locators import LocatorResolver

from .sources import (
    CodeUnitSource,
    FileSource,
    ImportSource,
    MappingSource,
)

from .plan import (
    FetchPlan,
    PlanAdapter,
    PlannedModule,
)

from .loader import (
    DynamicLoader,
    LoadRecord,
    LoadState,
)

from .diagnostics import Diagnostics

from .system import ModuleSystem

__all__ = [
    # Identity
    "ModuleId",
    "make_id",
    "parse_id",

    # Errors
    "RegistryError",
    "InvalidModuleError",
    "InvalidDependencyError",
    "DependencyNotFoundError",
    "CircularDependencyError",
    "MissingModuleError",
    "LoaderError",
    "ModuleLoadError",
    "LoadTimeoutError",
    "InitializationError",

    # Validation / graph
    "DependencyValidator",
    "validate_format",
    "validate_existence",
    "CycleDetector",
    "DeclaredDependencyGraph",

    # Events
    "Event",
    "EventBus",
    "EventType",

    # Config
    "ConfigError",
    "ConfigLoader",
    "LoaderConfig",
    "ModularyConfig",
    "RegistryConfig",

    # Registry
    "DependencyCheck",
    "ModuleRecord",
    "ModuleRegistry",
    "SafeGetResult",

    # Loader
    "LocatorResolver",
    "CodeUnitSource",
    "FileSource",
    "ImportSource",
    "MappingSource",
    "FetchPlan",
    "PlanAdapter",
    "PlannedModule",
    "DynamicLoader",
    "LoadRecord",
    "LoadState",

    # Reporting / wiring
    "Diagnostics",
    "ModuleSystem",
]
