"""
Module identity: ``(namespace, name)`` pairs with a canonical dotted form.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .errors import InvalidModuleError


SEPARATOR = "."


@dataclass(frozen=True)
class ModuleId:
    """Immutable module key. ``str(ModuleId("core", "a")) == "core.a"``."""

    namespace: str
    name: str

    def __post_init__(self):
        if not isinstance(self.namespace, str) or not self.namespace:
            raise InvalidModuleError(
                "namespace must be a non-empty string",
                namespace=self.namespace,
                name=self.name,
            )
        if not isinstance(self.name, str) or not self.name:
            raise InvalidModuleError(
                "name must be a non-empty string",
                namespace=self.namespace,
                name=self.name,
            )

    @property
    def key(self) -> str:
        return f"{self.namespace}{SEPARATOR}{self.name}"

    def __str__(self) -> str:
        return self.key

    @classmethod
    def coerce(cls, value: Union["ModuleId", str]) -> "ModuleId":
        """
        Accept a ModuleId or its canonical string.

        Raises:
            InvalidModuleError: If the string is not ``namespace.name``
        """
        if isinstance(value, ModuleId):
            return value
        parsed = parse_id(value) if isinstance(value, str) else None
        if parsed is None:
            raise InvalidModuleError(f"cannot parse module id {value!r}")
        return parsed


def make_id(namespace: str, name: str) -> str:
    """
    Build the canonical ``namespace.name`` key.

    Raises:
        InvalidModuleError: If either part is empty
    """
    return ModuleId(namespace, name).key


def parse_id(module_id: str) -> Optional[ModuleId]:
    """
    Split a canonical key into a ModuleId.

    Namespaces and names containing ``.`` are not supported: anything other
    than exactly two non-empty segments yields ``None``.
    """
    if not isinstance(module_id, str):
        return None
    parts = module_id.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return ModuleId(parts[0], parts[1])
