"""
Locator resolution: pure string transforms from what a client asks for to
the canonical locator the loader keys its state by.
"""

from typing import Dict, Optional
from pathlib import PurePosixPath
import re

from .ids import ModuleId

_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class LocatorResolver:
    """
    Resolve locators by alias substitution, base-path prefixing and
    extension normalization, in that order.

    Locators are ``/``-separated paths. Absolute paths (leading ``/``) and
    URLs (``scheme://``) are never prefixed.
    """

    def __init__(
        self,
        base_url: str = "",
        aliases: Optional[Dict[str, str]] = None,
        extension: str = ".py",
    ):
        self.base_url = base_url
        self.aliases: Dict[str, str] = dict(aliases or {})
        self.extension = extension

    def set_alias(self, alias: str, path: str) -> None:
        self.aliases[alias] = path

    def resolve(self, locator: str) -> str:
        """
        Canonicalize a locator.

        Raises:
            ValueError: If the locator is empty
        """
        if not isinstance(locator, str) or not locator.strip():
            raise ValueError("Locator must be a non-empty string")

        resolved = locator.strip()

        # First matching alias wins
        for alias, target in self.aliases.items():
            if resolved.startswith(alias):
                resolved = target + resolved[len(alias):]
                break

        if self.extension and not PurePosixPath(resolved).suffix:
            resolved += self.extension

        if self.is_absolute(resolved) or not self.base_url:
            return resolved

        if resolved.startswith("./"):
            resolved = resolved[2:]
        return f"{self.base_url.rstrip('/')}/{resolved}"

    @staticmethod
    def is_absolute(locator: str) -> bool:
        return locator.startswith("/") or bool(_SCHEME.match(locator))

    def strip(self, resolved: str) -> str:
        """Undo base-path prefixing and extension normalization."""
        relative = resolved
        base = self.base_url.rstrip("/")
        if base and relative.startswith(base + "/"):
            relative = relative[len(base) + 1:]
        if self.extension and relative.endswith(self.extension):
            relative = relative[: -len(self.extension)]
        return relative

    def module_id_for(self, resolved: str) -> Optional[ModuleId]:
        """
        Best-effort ModuleId from a locator: the parent directory is the
        namespace and the file stem is the name.
        """
        parts = [p for p in _SCHEME.sub("", self.strip(resolved)).split("/") if p]
        if len(parts) < 2:
            return None
        namespace, name = parts[-2], PurePosixPath(parts[-1]).stem
        if not namespace or not name or "." in namespace or "." in name:
            return None
        return ModuleId(namespace, name)

    def guess(self, module_id: ModuleId) -> str:
        """Conventional locator for a module: ``<namespace>/<name>``."""
        return self.resolve(f"{module_id.namespace}/{module_id.name}")

    def module_name(self, resolved: str) -> str:
        """File stem of a locator, used as the key for batch loads and versions."""
        return PurePosixPath(_SCHEME.sub("", resolved)).stem
