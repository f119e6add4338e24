"""
Intent Kernel API — FastAPI endpoints.

Exposes the governance core to agent hosts over HTTP:
- Intent listing, selection per task, completion
- Action pre-checks and full pipeline runs
- Task teardown
- Ledger queries
- Orchestration status
"""

import os
from pathlib import Path
from typing import Optional, Sequence, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from intent_kernel.concurrency.tracker import ConcurrencyTracker
from intent_kernel.hooks.pipeline import InterceptionPipeline
from intent_kernel.ledger.store import MutationLedger, PersistenceFailure
from intent_kernel.logging_utils import configure_logging
from intent_kernel.models.config import KernelConfig
from intent_kernel.models.pipeline import ActionRequest
from intent_kernel.registry.intents import (
    ConfigUnavailable,
    IntentNotFound,
    IntentRegistry,
    default_intent_sources,
)
from intent_kernel.workspace.store import WorkspaceStore


# --- Request/Response Models ---

class SelectIntentRequest(BaseModel):
    intent_id: str
    model_identifier: Optional[str] = None


# --- Application Factory ---

def create_app(
    workspace_root: Optional[Union[str, Path]] = None,
    config: Optional[KernelConfig] = None,
    intent_sources: Optional[Sequence[Union[str, Path]]] = None,
    registry: Optional[IntentRegistry] = None,
    ledger: Optional[MutationLedger] = None,
    log_level: Optional[int] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if log_level is not None:
        configure_logging(log_level)

    app = FastAPI(
        title="Intent Kernel API",
        description="Intent-governed mutation gate for autonomous agents",
        version="0.1.0",
    )

    # Initialize components
    cfg = config or KernelConfig()
    store = WorkspaceStore(workspace_root or os.getcwd())
    reg = registry or IntentRegistry(
        sources=intent_sources or default_intent_sources(store.root, cfg.intents_filename)
    )
    led = ledger or MutationLedger(store.root / cfg.ledger_path)
    tracker = ConcurrencyTracker(store.read_bytes)
    pipeline = InterceptionPipeline(
        registry=reg,
        tracker=tracker,
        ledger=led,
        store=store,
        config=cfg,
    )

    # Store components on app state for access in endpoints
    app.state.store = store
    app.state.registry = reg
    app.state.ledger = led
    app.state.tracker = tracker
    app.state.pipeline = pipeline

    @app.exception_handler(ConfigUnavailable)
    def config_unavailable(request: Request, exc: ConfigUnavailable):
        return JSONResponse(
            status_code=503,
            content={"kind": "ConfigUnavailable", "message": str(exc), "searched": exc.searched},
        )

    @app.exception_handler(PersistenceFailure)
    def persistence_failure(request: Request, exc: PersistenceFailure):
        return JSONResponse(
            status_code=500,
            content={"kind": "PersistenceFailure", "message": str(exc)},
        )

    # === INTENTS ===

    @app.get("/intents")
    def list_intents():
        """All declared intents."""
        return [i.model_dump(mode="json") for i in reg.list_intents()]

    @app.get("/intents/history")
    def intent_history():
        """Selections, releases and completions, in order."""
        return [h.model_dump(mode="json") for h in reg.selection_history()]

    @app.get("/intents/{intent_id}")
    def get_intent(intent_id: str):
        intent = reg.get_intent(intent_id)
        if intent is None:
            raise HTTPException(404, "Intent not found")
        return intent.model_dump(mode="json")

    @app.post("/intents/{intent_id}/complete")
    def complete_intent(intent_id: str):
        """External workflow signal: the intent is done."""
        try:
            intent = reg.complete_intent(intent_id)
        except IntentNotFound:
            raise HTTPException(404, "Intent not found")
        return intent.model_dump(mode="json")

    # === TASKS ===

    @app.post("/tasks/{task_id}/intent")
    def select_intent(task_id: str, req: SelectIntentRequest):
        """Select the task's active intent (goes through the pipeline)."""
        outcome = pipeline.run(ActionRequest(
            name=cfg.select_intent_action,
            params={"intent_id": req.intent_id},
            task_id=task_id,
            model_identifier=req.model_identifier,
        ))
        return outcome.model_dump(mode="json")

    @app.get("/tasks/{task_id}/intent")
    def get_active_intent(task_id: str):
        intent = reg.get_active_intent(task_id)
        if intent is None:
            raise HTTPException(404, "No active intent for task")
        return intent.model_dump(mode="json")

    @app.delete("/tasks/{task_id}")
    def end_task(task_id: str):
        """Task completed: drop its observations and its intent."""
        pipeline.end_task(task_id)
        return {"status": "ended", "task_id": task_id}

    # === ACTIONS ===

    @app.post("/actions/precheck")
    def precheck_action(req: ActionRequest):
        """Pre-checks only, for hosts that execute the action themselves."""
        return pipeline.pre_check(req).model_dump(mode="json")

    @app.post("/actions/run")
    def run_action(req: ActionRequest):
        """Full pipeline: pre-check, execute, classify, record."""
        return pipeline.run(req).model_dump(mode="json")

    # === LEDGER ===

    @app.get("/ledger")
    def get_ledger(limit: int = 50):
        """Most recent ledger entries, in append order."""
        entries = led.export()
        return entries[-limit:] if limit > 0 else []

    @app.get("/ledger/summary")
    def ledger_summary():
        return led.summary()

    @app.get("/ledger/by-resource")
    def ledger_by_resource(path: str):
        resource = store.canonicalize(path)
        return [e.model_dump(mode="json") for e in led.query_by_resource(resource)]

    @app.get("/ledger/by-intent/{intent_id}")
    def ledger_by_intent(intent_id: str):
        return [e.model_dump(mode="json") for e in led.query_by_intent(intent_id)]

    # === ORCHESTRATION ===

    @app.get("/orchestration/status")
    def orchestration_status():
        """Resources currently under observation across tasks."""
        return tracker.status()

    return app


# Default application instance
app = create_app()
