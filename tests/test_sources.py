"""
Test 8: Code unit sources (sources.py)
"""

import asyncio
import sys

import pytest

from modulary.sources import FileSource, ImportSource, MappingSource, materialize


# ============================================================================
# FileSource
# ============================================================================

class TestFileSource:

    @pytest.mark.asyncio
    async def test_executes_file(self, tmp_path):
        (tmp_path / "core").mkdir()
        (tmp_path / "core" / "a.py").write_text("value = 42\n__version__ = '1.0'\n")

        source = FileSource(tmp_path)
        unit = await source.fetch("core/a.py")

        assert unit.value == 42
        assert unit.__version__ == "1.0"

    @pytest.mark.asyncio
    async def test_cached_per_path(self, tmp_path):
        (tmp_path / "a.py").write_text("import random\ntoken = random.random()\n")
        source = FileSource(tmp_path)

        first = await source.fetch("a.py")
        second = await source.fetch(str(tmp_path / "a.py"))

        assert first is second

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await FileSource(tmp_path).fetch("nope.py")

    @pytest.mark.asyncio
    async def test_failing_body_not_cached(self, tmp_path):
        (tmp_path / "broken.py").write_text("raise RuntimeError('bad unit')\n")
        source = FileSource(tmp_path)

        with pytest.raises(RuntimeError, match="bad unit"):
            await source.fetch("broken.py")

        assert not any(name.startswith("_modulary_unit_broken_") for name in sys.modules)

        (tmp_path / "broken.py").write_text("ok = True\n")
        assert (await source.fetch("broken.py")).ok is True

    @pytest.mark.asyncio
    async def test_refetch_during_run_shares_it(self, tmp_path):
        runs = tmp_path / "runs.txt"
        (tmp_path / "slow.py").write_text(
            "import time\n"
            f"with open({str(runs)!r}, 'a') as f:\n"
            "    f.write('x')\n"
            "time.sleep(0.2)\n"
            "value = 7\n"
        )
        source = FileSource(tmp_path)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(source.fetch("slow.py"), timeout=0.05)
        unit = await source.fetch("slow.py")

        assert unit.value == 7
        assert runs.read_text() == "x"
        assert await source.fetch("slow.py") is unit

    def test_path_for(self, tmp_path):
        source = FileSource(tmp_path)
        assert source.path_for("x/y.py") == tmp_path / "x" / "y.py"
        assert source.path_for("/abs/y.py").as_posix() == "/abs/y.py"


# ============================================================================
# ImportSource
# ============================================================================

class TestImportSource:

    def test_module_name(self):
        source = ImportSource()
        assert source.module_name("pkg/sub/mod.py") == "pkg.sub.mod"
        assert source.module_name("/json") == "json"

    @pytest.mark.asyncio
    async def test_imports_module(self):
        import json

        assert await ImportSource().fetch("json.py") is json

    @pytest.mark.asyncio
    async def test_missing_module(self):
        with pytest.raises(ModuleNotFoundError):
            await ImportSource().fetch("no_such_pkg_xyz/mod.py")


# ============================================================================
# MappingSource
# ============================================================================

class TestMappingSource:

    @pytest.mark.asyncio
    async def test_plain_object(self):
        unit = {"v": 1}
        source = MappingSource({"core/a.py": unit})
        assert await source.fetch("core/a.py") is unit

    @pytest.mark.asyncio
    async def test_factories(self):
        async def async_factory():
            return {"async": True}

        source = MappingSource()
        source.add("sync.py", lambda: {"sync": True})
        source.add("async.py", async_factory)

        assert await source.fetch("sync.py") == {"sync": True}
        assert await source.fetch("async.py") == {"async": True}

    @pytest.mark.asyncio
    async def test_unknown_locator(self):
        with pytest.raises(FileNotFoundError):
            await MappingSource().fetch("x.py")

    @pytest.mark.asyncio
    async def test_classes_returned_unchanged(self):
        class Widget:
            pass

        assert await materialize(Widget) is Widget
        assert await materialize(sys) is sys
