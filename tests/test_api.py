"""Tests for the FastAPI API endpoints."""

import logging

import pytest
from fastapi.testclient import TestClient

from intent_kernel.api.app import create_app
from intent_kernel.ledger.store import MutationLedger
from intent_kernel.logging_utils import configure_logging

INTENTS_YAML = """
intents:
  - id: INT-1
    name: Auth hardening
    owned_scope: ["src/auth/**"]
    acceptance_criteria: ["MFA works"]
  - id: INT-2
    name: UI refresh
    owned_scope: ["src/ui/**"]
"""


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "active_intents.yaml").write_text(INTENTS_YAML)
    (tmp_path / "src" / "auth").mkdir(parents=True)
    (tmp_path / "src" / "auth" / "login.ts").write_text("export const a = 1\n")
    return tmp_path


@pytest.fixture
def client(workspace):
    """Create a test client over a fresh workspace."""
    return TestClient(create_app(workspace_root=workspace))


def _run(client, name, task_id="task-1", **params):
    return client.post("/actions/run", json={"name": name, "task_id": task_id, "params": params})


class TestIntentEndpoints:
    def test_list_intents(self, client):
        response = client.get("/intents")
        assert response.status_code == 200
        assert [i["id"] for i in response.json()] == ["INT-1", "INT-2"]

    def test_get_intent(self, client):
        assert client.get("/intents/INT-1").json()["name"] == "Auth hardening"
        assert client.get("/intents/NOPE").status_code == 404

    def test_complete_intent(self, client):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        response = client.post("/intents/INT-1/complete")
        assert response.json()["status"] == "completed"
        assert client.get("/tasks/task-1/intent").status_code == 404
        assert client.post("/intents/NOPE/complete").status_code == 404

    def test_history(self, client):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        client.delete("/tasks/task-1")
        events = [h["event"] for h in client.get("/intents/history").json()]
        assert events == ["selected", "released"]

    def test_missing_config_is_503(self, tmp_path):
        client = TestClient(create_app(workspace_root=tmp_path, intent_sources=[tmp_path / "missing.yaml"]))
        response = client.get("/intents")
        assert response.status_code == 503
        assert response.json()["kind"] == "ConfigUnavailable"
        assert response.json()["searched"] == [str(tmp_path / "missing.yaml")]


class TestTaskEndpoints:
    def test_select_intent(self, client):
        response = client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == "completed"
        assert "MFA works" in data["message"]
        assert client.get("/tasks/task-1/intent").json()["id"] == "INT-1"

    def test_select_unknown_intent_is_structured(self, client):
        data = client.post("/tasks/task-1/intent", json={"intent_id": "BAD"}).json()
        assert data["stage"] == "blocked"
        assert data["rejection"]["kind"] == "IntentNotFound"
        assert data["rejection"]["details"]["valid_ids"] == ["INT-1", "INT-2"]

    def test_no_active_intent(self, client):
        assert client.get("/tasks/task-9/intent").status_code == 404

    def test_end_task(self, client):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        _run(client, "read_file", path="src/auth/login.ts")
        assert client.delete("/tasks/task-1").json()["status"] == "ended"
        assert client.get("/tasks/task-1/intent").status_code == 404
        assert client.get("/orchestration/status").json()["total_tracked"] == 0


class TestActionEndpoints:
    def test_blocked_write_is_200_with_rejection(self, client, workspace):
        response = _run(client, "write_to_file", path="src/auth/login.ts", content="x")
        assert response.status_code == 200
        assert response.json()["rejection"]["kind"] == "NoActiveIntent"
        assert (workspace / "src/auth/login.ts").read_text() == "export const a = 1\n"

    def test_governed_write(self, client, workspace):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        _run(client, "read_file", path="src/auth/login.ts")
        data = _run(client, "write_to_file", path="src/auth/login.ts", content="export const a = 2\n").json()
        assert data["stage"] == "completed"
        assert len(data["ledger_entry_ids"]) == 1
        assert (workspace / ".orchestration" / "agent_trace.jsonl").exists()

    def test_precheck_only(self, client):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        data = client.post("/actions/precheck", json={
            "name": "write_to_file",
            "task_id": "task-1",
            "params": {"path": "src/ui/App.tsx"},
        }).json()
        assert data["allowed"] is False
        assert data["rejection"]["kind"] == "OutOfScope"

    def test_stale_write(self, client, workspace):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        _run(client, "read_file", path="src/auth/login.ts")
        (workspace / "src/auth/login.ts").write_text("export const a = 3\n")
        data = _run(client, "write_to_file", path="src/auth/login.ts", content="x\n").json()
        assert data["rejection"]["kind"] == "StaleResource"

    def test_persistence_failure_is_500(self, workspace):
        blocker = workspace / "blocker"
        blocker.write_text("")
        client = TestClient(create_app(
            workspace_root=workspace,
            ledger=MutationLedger(blocker / "trace.jsonl"),
        ))
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        response = _run(client, "write_to_file", path="src/auth/new.ts", content="x\n")
        assert response.status_code == 500
        assert response.json()["kind"] == "PersistenceFailure"


class TestLedgerEndpoints:
    def _write_twice(self, client):
        client.post("/tasks/task-1/intent", json={"intent_id": "INT-1"})
        _run(client, "write_to_file", path="src/auth/a.ts", content="a\n")
        _run(client, "write_to_file", path="./src/auth/b.ts", content="b\n")

    def test_ledger_listing(self, client):
        self._write_twice(client)
        entries = client.get("/ledger").json()
        assert [e["resource"] for e in entries] == ["src/auth/a.ts", "src/auth/b.ts"]
        assert len(client.get("/ledger?limit=1").json()) == 1

    def test_by_resource_canonicalizes(self, client):
        self._write_twice(client)
        entries = client.get("/ledger/by-resource", params={"path": "./src/auth/b.ts"}).json()
        assert len(entries) == 1

    def test_by_intent(self, client):
        self._write_twice(client)
        assert len(client.get("/ledger/by-intent/INT-1").json()) == 2
        assert client.get("/ledger/by-intent/INT-2").json() == []

    def test_summary(self, client):
        self._write_twice(client)
        summary = client.get("/ledger/summary").json()
        assert summary["total_entries"] == 2
        assert summary["intent_counts"] == {"INT-1": 2}
        assert summary["mutation_class_counts"] == {"INTENT_EVOLUTION": 2}


class TestOrchestrationStatus:
    def test_status_lists_observed_resources(self, client):
        _run(client, "read_file", task_id="task-1", path="src/auth/login.ts")
        _run(client, "read_file", task_id="task-2", path="src/auth/login.ts")
        status = client.get("/orchestration/status").json()
        assert status["active_resources"] == ["src/auth/login.ts"]
        assert status["total_tracked"] == 2
        assert status["tasks"] == 2


class TestLogging:
    def test_configure_logging_is_idempotent(self, tmp_path):
        root = logging.getLogger()
        saved = list(root.handlers)
        saved_level = root.level
        was_configured = getattr(root, "_intent_kernel_configured", False)
        try:
            if hasattr(root, "_intent_kernel_configured"):
                delattr(root, "_intent_kernel_configured")
            configure_logging(logging.DEBUG, tmp_path / "logs" / "kernel.log")
            count = len(root.handlers)
            configure_logging(logging.WARNING)
            assert len(root.handlers) == count
            assert root.level == logging.WARNING
            assert (tmp_path / "logs" / "kernel.log").exists()
        finally:
            for handler in root.handlers[:]:
                if handler not in saved:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(saved_level)
            setattr(root, "_intent_kernel_configured", was_configured)
