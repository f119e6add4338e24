"""
Acceptance scenarios and cross-component properties of the mutation gate.

Each class drives the pipeline the way an agent host would: one action at a
time, through `InterceptionPipeline.run`, over a real temporary workspace.
"""

from intent_kernel.concurrency.tracker import ConcurrencyTracker
from intent_kernel.fingerprint.digest import fingerprint
from intent_kernel.hooks.pipeline import InterceptionPipeline
from intent_kernel.ledger.store import MutationLedger
from intent_kernel.models.intent import Intent
from intent_kernel.models.ledger import MutationClass
from intent_kernel.models.pipeline import ActionRequest, BlockKind, PipelineStage
from intent_kernel.models.tracking import FreshnessStatus
from intent_kernel.registry.intents import IntentRegistry
from intent_kernel.workspace.store import WorkspaceStore


def _make_pipeline(tmp_path, *intents: Intent) -> InterceptionPipeline:
    store = WorkspaceStore(tmp_path)
    return InterceptionPipeline(
        registry=IntentRegistry(intents=list(intents)),
        tracker=ConcurrencyTracker(store.read_bytes),
        ledger=MutationLedger(tmp_path / ".orchestration" / "agent_trace.jsonl"),
        store=store,
    )


def _act(pipeline, name, task_id="task-1", **params):
    return pipeline.run(ActionRequest(name=name, params=params, task_id=task_id))


class TestScopeEnforcement:
    def test_in_scope_allowed_out_of_scope_blocked(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="Auth", owned_scope=["src/auth/**"]))
        _act(pipeline, "select_active_intent", intent_id="INT-1")

        allowed = _act(pipeline, "write_to_file", path="src/auth/login.ts", content="export {}\n")
        assert allowed.stage == PipelineStage.COMPLETED

        blocked = _act(pipeline, "write_to_file", path="src/ui/App.ts", content="export {}\n")
        assert blocked.rejection.kind == BlockKind.OUT_OF_SCOPE
        assert not (tmp_path / "src" / "ui" / "App.ts").exists()


class TestStaleWrite:
    def test_external_change_blocks_write_and_reports_baseline(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="All", owned_scope=["src/**"]))
        pipeline.store.write_text("src/x.ts", "export const x = 1\n")
        f1 = fingerprint("export const x = 1\n")
        _act(pipeline, "select_active_intent", intent_id="INT-1")
        _act(pipeline, "read_file", path="src/x.ts")

        (tmp_path / "src" / "x.ts").write_text("export const x = 2\n")
        f2 = fingerprint("export const x = 2\n")

        outcome = _act(pipeline, "write_to_file", path="src/x.ts", content="export const x = 3\n")
        assert outcome.rejection.kind == BlockKind.STALE_RESOURCE
        assert outcome.rejection.details["baseline_fingerprint"] == f1
        assert outcome.rejection.details["current_fingerprint"] == f2


class TestNoIntent:
    def test_blocked_until_valid_selection(self, tmp_path):
        pipeline = _make_pipeline(
            tmp_path,
            Intent(id="INT-1", name="Auth", owned_scope=["src/auth/**"]),
            Intent(id="INT-2", name="UI", owned_scope=["src/ui/**"]),
        )
        for name, params in [
            ("write_to_file", {"path": "src/auth/a.ts", "content": "x"}),
            ("delete_file", {"path": "src/auth/a.ts"}),
            ("apply_diff", {"path": "src/ui/b.ts", "search": "a", "replace": "b"}),
        ]:
            outcome = _act(pipeline, name, **params)
            assert outcome.rejection.kind == BlockKind.NO_ACTIVE_INTENT

        bad = _act(pipeline, "select_active_intent", intent_id="BAD-ID")
        assert bad.rejection.kind == BlockKind.INTENT_NOT_FOUND
        assert bad.rejection.details["valid_ids"] == ["INT-1", "INT-2"]
        assert "INT-1" in bad.rejection.message

        _act(pipeline, "select_active_intent", intent_id="INT-1")
        assert _act(pipeline, "write_to_file", path="src/auth/a.ts", content="x").stage == PipelineStage.COMPLETED


class TestClassification:
    def test_one_line_edit_and_new_file(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="All", owned_scope=["src/**"]))
        source = "".join(f"const value{i} = {i};\n" for i in range(50))
        pipeline.store.write_text("src/values.ts", source)
        _act(pipeline, "select_active_intent", intent_id="INT-1")
        _act(pipeline, "read_file", path="src/values.ts")

        edit = _act(pipeline, "apply_diff", path="src/values.ts", search="value9 = 9;", replace="value9 = 99;")
        added = _act(pipeline, "write_to_file", path="src/feature.ts", content="export function feature() {}\n")

        assert pipeline.ledger.get_by_id(edit.ledger_entry_ids[0]).mutation_class == MutationClass.AST_REFACTOR
        assert pipeline.ledger.get_by_id(added.ledger_entry_ids[0]).mutation_class == MutationClass.INTENT_EVOLUTION


class TestProperties:
    def test_freshness_follows_content(self, tmp_path):
        pipeline = _make_pipeline(tmp_path)
        for i, content in enumerate(["a", "", "line\n" * 10, "ünïcode\n"]):
            resource = f"r{i}.txt"
            pipeline.store.write_text(resource, content)
            pipeline.tracker.record_observation("task-1", resource, content)
            assert pipeline.tracker.check_freshness("task-1", resource).status == FreshnessStatus.FRESH
            pipeline.store.write_text(resource, content + "changed")
            assert pipeline.tracker.check_freshness("task-1", resource).status == FreshnessStatus.STALE

    def test_reselecting_is_idempotent_and_unlogged(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="Auth", owned_scope=["src/auth/**"]))
        _act(pipeline, "select_active_intent", intent_id="INT-1")
        _act(pipeline, "select_active_intent", intent_id="INT-1")
        assert pipeline.registry.get_active_intent("task-1").id == "INT-1"
        assert pipeline.ledger.count() == 0
        assert len(pipeline.registry.selection_history()) == 1

    def test_ledger_keeps_every_mutation_in_order(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="Auth", owned_scope=["src/auth/**"]))
        _act(pipeline, "select_active_intent", intent_id="INT-1")

        ids = []
        for n in range(5):
            outcome = _act(pipeline, "write_to_file", path="src/auth/a.ts", content=f"v{n}\n")
            ids += outcome.ledger_entry_ids
        before = [(e.id, e.mutation_class) for e in pipeline.ledger.query_by_resource("src/auth/a.ts")]

        _act(pipeline, "write_to_file", path="src/auth/other.ts", content="x\n")
        after = [(e.id, e.mutation_class) for e in pipeline.ledger.query_by_resource("src/auth/a.ts")]

        assert [i for i, _ in before] == ids
        assert after == before

    def test_rejected_action_leaves_no_trace(self, tmp_path):
        pipeline = _make_pipeline(tmp_path, Intent(id="INT-1", name="Auth", owned_scope=["src/auth/**"]))
        pipeline.store.write_text("src/ui/App.ts", "old\n")
        _act(pipeline, "select_active_intent", intent_id="INT-1")
        _act(pipeline, "write_to_file", path="src/ui/App.ts", content="new\n")

        assert pipeline.store.read_text("src/ui/App.ts") == "old\n"
        assert pipeline.ledger.count() == 0
        assert pipeline.tracker.get_observation("task-1", "src/ui/App.ts") is None
