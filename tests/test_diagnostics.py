"""
Test 11: Module system diagnostics (diagnostics.py)
"""

import pytest

from modulary.config import LoaderConfig
from modulary.diagnostics import (
    FILE_NOT_FOUND,
    IMPORT_ERROR,
    PATH_ESTIMATION_FAILED,
    Diagnostics,
)
from modulary.loader import DynamicLoader
from modulary.sources import MappingSource


def broken_unit():
    raise SyntaxError("unexpected indent")


@pytest.fixture
def mapping_source():
    return MappingSource({"core/a.py": {"ok": True}, "ui/broken.py": broken_unit})


@pytest.fixture
def diagnostics(registry, mapping_source):
    loader = DynamicLoader(registry, mapping_source, LoaderConfig(timeout=1.0))
    return Diagnostics(registry, loader)


# ============================================================================
# Path probes
# ============================================================================

class TestCheckModulePaths:

    @pytest.mark.asyncio
    async def test_no_problems(self, registry, diagnostics):
        registry.register("core", "a", {})
        assert await diagnostics.check_module_paths() == []

    @pytest.mark.asyncio
    async def test_file_not_found(self, registry, diagnostics):
        registry.register("ui", "ghost", {})

        problems = await diagnostics.check_module_paths()

        assert len(problems) == 1
        assert problems[0]["module_id"] == "ui.ghost"
        assert problems[0]["type"] == FILE_NOT_FOUND
        assert problems[0]["estimated_path"] == "ui/ghost.py"

    @pytest.mark.asyncio
    async def test_import_error(self, registry, diagnostics):
        registry.register("ui", "broken", {})

        problems = await diagnostics.check_module_paths()

        assert problems[0]["type"] == IMPORT_ERROR
        assert "SyntaxError" in problems[0]["error"]

    @pytest.mark.asyncio
    async def test_path_estimation_failed(self, registry, diagnostics, monkeypatch):
        registry.register("core", "a", {})
        monkeypatch.setattr(diagnostics.loader, "guess_module_path", lambda ns, name: None)

        problems = await diagnostics.check_module_paths()

        assert problems[0]["type"] == PATH_ESTIMATION_FAILED
        assert "estimated_path" not in problems[0]

    @pytest.mark.asyncio
    async def test_planned_locator_used(self, registry, diagnostics):
        registry.register("ui", "preview", {})
        diagnostics.loader.register_module("ui.preview", "core/a")
        assert await diagnostics.check_module_paths() == []

    @pytest.mark.asyncio
    async def test_probe_leaves_state_alone(self, registry, diagnostics):
        registry.register("core", "a", {})
        await diagnostics.check_module_paths()
        assert diagnostics.loader.loaded == []

    @pytest.mark.asyncio
    async def test_module_import_probe(self, diagnostics):
        assert await diagnostics.test_module_import("core/a.py") == {
            "success": True,
            "path": "core/a.py",
        }
        missing = await diagnostics.test_module_import("nope.py")
        assert missing["success"] is False
        assert "nope.py" in missing["error"]

    @pytest.mark.asyncio
    async def test_module_import_propagates_other_errors(self, diagnostics):
        with pytest.raises(SyntaxError):
            await diagnostics.test_module_import("ui/broken.py")


# ============================================================================
# Full report
# ============================================================================

class TestDiagnoseModuleSystem:

    @pytest.mark.asyncio
    async def test_report_shape(self, registry, diagnostics):
        from modulary import __version__

        registry.register("core", "a", {})
        registry.register("ui", "panel", {}, ["ui.theme"])
        registry.set_initialized(True)

        results = await diagnostics.diagnose_module_system()

        assert results["loader_version"] == __version__
        assert results["registry_version"] == __version__
        assert results["timestamp"]
        status = results["registry_status"]
        assert status["initialized"] is True
        assert status["namespaces"] == ["core", "ui"]
        assert status["module_count"] == 2
        assert status["modules"]["ui"][0]["has_missing_dependencies"] is True
        assert results["loader_diagnosis"]["modules"]["ui.panel"]["has_problems"] is True
        assert [p["module_id"] for p in results["path_problems"]] == ["ui.panel"]

    def test_registry_status_empty(self, diagnostics):
        status = diagnostics.registry_status()
        assert status == {
            "initialized": False,
            "namespaces": [],
            "module_count": 0,
            "modules": {},
        }


# ============================================================================
# Text rendering
# ============================================================================

class TestFormatResults:

    def test_empty(self):
        assert Diagnostics.format_results(None) == "No diagnostic results.\n"
        assert Diagnostics.format_results({}) == "No diagnostic results.\n"

    @pytest.mark.asyncio
    async def test_clean_report(self, registry, diagnostics):
        registry.register("core", "a", {})

        text = Diagnostics.format_results(await diagnostics.diagnose_module_system())

        assert "No path problems found." in text
        assert "No circular dependencies found." in text
        assert "Namespaces: core" in text
        assert "Total modules: 1" in text
        assert "Initialized: no" in text

    @pytest.mark.asyncio
    async def test_problem_report(self, registry, diagnostics):
        registry.register("ui", "panel", {}, ["ui.theme"])
        diagnostics.loader.register_module("core.a", "core/a", ["core.b"])
        diagnostics.loader.register_module("core.b", "core/b", ["core.a"])

        text = Diagnostics.format_results(await diagnostics.diagnose_module_system())

        assert "ui.panel: No file for module ui.panel" in text
        assert "(path: ui/panel.py)" in text
        assert "core.a -> core.b -> core.a" in text
        assert "ui.theme [not loaded] [not registered]" in text
