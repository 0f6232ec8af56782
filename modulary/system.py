"""
Host-side wiring of one registry, loader and diagnostics instance.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass

from .config import ConfigLoader, ModularyConfig
from .diagnostics import Diagnostics
from .loader import DynamicLoader
from .registry import ModuleRegistry
from .sources import CodeUnitSource, FileSource


@dataclass
class ModuleSystem:
    """
    The module system of one host application.

    Build it once at startup and hand ``registry`` / ``loader`` to the
    subsystems that need them.
    """

    config: ModularyConfig
    registry: ModuleRegistry
    loader: DynamicLoader
    diagnostics: Diagnostics

    @classmethod
    def create(
        cls,
        config: Optional[ModularyConfig] = None,
        source: Optional[CodeUnitSource] = None,
    ) -> "ModuleSystem":
        """
        Args:
            config: Configuration (defaults when omitted)
            source: Code unit source (``FileSource`` rooted at the cwd
                when omitted)
        """
        config = config or ModularyConfig()
        registry = ModuleRegistry(config.registry)
        loader = DynamicLoader(registry, source or FileSource(), config.loader)
        return cls(
            config=config,
            registry=registry,
            loader=loader,
            diagnostics=Diagnostics(registry, loader),
        )

    @classmethod
    def from_config(
        cls,
        paths: Optional[List[str]] = None,
        *,
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        source: Optional[CodeUnitSource] = None,
    ) -> "ModuleSystem":
        """Load layered configuration, then build the system."""
        config = ConfigLoader.load(paths, env_file=env_file, overrides=overrides)
        return cls.create(config, source)

    async def start(self) -> Dict[str, Any]:
        """Preload configured modules and mark the registry ready."""
        preloaded = await self.loader.preload()
        self.registry.set_initialized(True)
        return preloaded
