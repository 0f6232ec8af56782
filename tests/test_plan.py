"""
Test 7: Fetch plan and plan adapter (plan.py)
"""

import logging

from modulary.ids import ModuleId
from modulary.locators import LocatorResolver
from modulary.plan import FetchPlan, PlanAdapter


A = ModuleId("core", "a")
B = ModuleId("core", "b")
C = ModuleId("core", "c")


class TestFetchPlan:

    def test_register_and_lookup(self):
        plan = FetchPlan()
        entry = plan.register("core.b", "/m/core/b.py", ["core.a"], {"init": False})
        assert entry.module_id == B
        assert plan.get(B) is entry
        assert plan.by_locator("/m/core/b.py") is entry
        assert plan.dependencies_of(B) == [A]
        assert B in plan
        assert len(plan) == 1

    def test_repeat_registration_merges(self):
        plan = FetchPlan()
        plan.register(B, "/m/core/b.py", [A])
        plan.register(B, "/m/core/b.py", [A, C], {"init": False})
        entry = plan.get(B)
        assert entry.dependencies == [A, C]
        assert entry.options == {"init": False}

    def test_locator_mismatch_keeps_first(self, caplog):
        plan = FetchPlan()
        plan.register(B, "/m/core/b.py")
        with caplog.at_level(logging.WARNING, logger="modulary.plan"):
            plan.register(B, "/elsewhere/b.py")
        assert plan.get(B).locator == "/m/core/b.py"
        assert "ignoring locator" in caplog.text

    def test_unknown(self):
        plan = FetchPlan()
        assert plan.get(A) is None
        assert plan.by_locator("x") is None
        assert plan.dependencies_of(A) == []
        assert list(plan) == []


class TestPlanAdapter:

    def make(self, registry):
        plan = FetchPlan()
        return plan, PlanAdapter(plan, registry, LocatorResolver(base_url="/m"))

    def test_module_id_from_plan(self, registry):
        plan, adapter = self.make(registry)
        plan.register("ui.preview", "/m/widgets/p.py")
        assert adapter.module_id_for("/m/widgets/p.py") == ModuleId("ui", "preview")

    def test_module_id_from_convention(self, registry):
        _, adapter = self.make(registry)
        assert adapter.module_id_for("/m/core/a.py") == A

    def test_declared_dependencies_combine_sources(self, registry):
        plan, adapter = self.make(registry)
        registry.register("core", "b", {}, ["core.c", "core.a"])
        plan.register(B, "/m/core/b.py", [A])
        assert adapter.declared_dependencies(B) == [A, C]

    def test_pending_dependencies(self, registry):
        plan, adapter = self.make(registry)
        registry.register("core", "a", {})
        plan.register(C, "/m/lib/c.py")
        plan.register(B, "/m/core/b.py", [A, C, ModuleId("core", "d")])

        assert adapter.pending_dependencies(B) == [
            (C, "/m/lib/c.py"),
            (ModuleId("core", "d"), None),
        ]

    def test_options_copy(self, registry):
        plan, adapter = self.make(registry)
        plan.register(B, "/m/core/b.py", options={"init": False})
        adapter.options_for(B)["init"] = True
        assert adapter.options_for(B) == {"init": False}
        assert adapter.options_for(A) == {}
