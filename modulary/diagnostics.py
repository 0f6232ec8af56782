"""
Module system diagnostics.

Read-only: combines the loader's ``diagnose()`` with a registry summary and
probes whether every registered module's guessed locator can be fetched.
Nothing here changes registry or loader state.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import asyncio
import logging

from jinja2 import Environment

from .loader import DynamicLoader
from .registry import ModuleRegistry

logger = logging.getLogger("modulary.diagnostics")


PATH_ESTIMATION_FAILED = "PATH_ESTIMATION_FAILED"
FILE_NOT_FOUND = "FILE_NOT_FOUND"
IMPORT_ERROR = "IMPORT_ERROR"


REPORT_TEMPLATE = """\
Module system diagnostics ({{ results.timestamp }})
Loader version: {{ results.loader_version }}
Registry version: {{ results.registry_version }}

Path problems
{% for problem in results.path_problems %}
  - {{ problem.module_id }}: {{ problem.message }}{% if problem.estimated_path %} (path: {{ problem.estimated_path }}){% endif %}

{% else %}
  No path problems found.
{% endfor %}

Circular dependencies
{% for circular in results.loader_diagnosis.circular_dependencies %}
  - start module {{ circular.start_module }}: {% for cycle in circular.cycles %}{{ cycle | join(" -> ") }}{% if not loop.last %}, {% endif %}{% endfor %}

{% else %}
  No circular dependencies found.
{% endfor %}

Modules with problems
{% for module_id, info in results.loader_diagnosis.modules.items() if info.has_problems %}
  - {{ module_id }}: {% for dep in info.problematic_dependencies %}{{ dep.id }}{% if not dep.loaded %} [not loaded]{% endif %}{% if not dep.registered %} [not registered]{% endif %}{% if not loop.last %}, {% endif %}{% endfor %}

{% else %}
  None.
{% endfor %}

Registry status
  Initialized: {{ "yes" if results.registry_status.initialized else "no" }}
  Namespaces: {{ results.registry_status.namespaces | join(", ") or "-" }}
  Total modules: {{ results.registry_status.module_count }}
"""

_env = Environment(
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


class Diagnostics:
    """Stateless reporting over one registry and loader."""

    def __init__(self, registry: ModuleRegistry, loader: DynamicLoader):
        self.registry = registry
        self.loader = loader

    async def diagnose_module_system(self) -> Dict[str, Any]:
        """
        Full diagnostic report.

        Returns:
            Dict with timestamp, versions, loader diagnosis, registry status
            and path problems
        """
        from . import __version__

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "loader_version": __version__,
            "registry_version": __version__,
            "loader_diagnosis": self.loader.diagnose(),
            "registry_status": self.registry_status(),
            "path_problems": await self.check_module_paths(),
        }

    def registry_status(self) -> Dict[str, Any]:
        namespaces = self.registry.get_namespaces()
        return {
            "initialized": self.registry.is_initialized(),
            "namespaces": namespaces,
            "module_count": len(self.registry),
            "modules": {
                namespace: [
                    {
                        "id": record.id.key,
                        "name": record.name,
                        "has_missing_dependencies": record.metadata.get(
                            "has_missing_dependencies", False
                        ),
                    }
                    for record in self.registry.get_modules(namespace)
                ]
                for namespace in namespaces
            },
        }

    async def check_module_paths(self) -> List[Dict[str, Any]]:
        """Probe the guessed locator of every registered module."""
        problems: List[Dict[str, Any]] = []

        for record in self.registry.get_modules():
            module_id = record.id.key
            estimated_path = self.loader.guess_module_path(record.namespace, record.name)

            if not estimated_path:
                problems.append({
                    "module_id": module_id,
                    "type": PATH_ESTIMATION_FAILED,
                    "message": f"Could not estimate a path for module {module_id}",
                })
                continue

            try:
                probe = await self.test_module_import(estimated_path)
            except Exception as e:
                problems.append({
                    "module_id": module_id,
                    "type": IMPORT_ERROR,
                    "estimated_path": estimated_path,
                    "message": f"Importing module {module_id} raised",
                    "error": f"{type(e).__name__}: {e}",
                })
                continue

            if not probe["success"]:
                problems.append({
                    "module_id": module_id,
                    "type": FILE_NOT_FOUND,
                    "estimated_path": estimated_path,
                    "message": f"No file for module {module_id} at its estimated path {estimated_path}",
                    "error": probe["error"],
                })

        return problems

    async def test_module_import(self, path: str) -> Dict[str, Any]:
        """
        Try fetching a locator straight from the loader's source.

        A missing unit is reported as ``success: False``; any other
        exception propagates.
        """
        try:
            await asyncio.wait_for(
                self.loader.source.fetch(path),
                timeout=self.loader.config.timeout,
            )
        except (FileNotFoundError, ModuleNotFoundError) as e:
            return {"success": False, "path": path, "error": str(e)}
        return {"success": True, "path": path}

    @staticmethod
    def format_results(results: Optional[Dict[str, Any]]) -> str:
        """Render a report from ``diagnose_module_system`` as plain text."""
        if not results:
            return "No diagnostic results.\n"
        return _env.from_string(REPORT_TEMPLATE).render(results=results)
