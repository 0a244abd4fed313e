"""Minimal FastAPI interface for sysmaint."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from sysmaint.core.errors import UnknownActionError
from sysmaint.runtime import MaintenanceRuntime

logger = logging.getLogger(__name__)


class RunIn(BaseModel):
    """Ordered batch of action ids to apply."""

    action_ids: list[str] = Field(min_length=1)
    refresh: bool = False


def _runtime(request: Request) -> MaintenanceRuntime:
    return request.app.state.runtime


def create_app(runtime: MaintenanceRuntime | None = None) -> FastAPI:
    app = FastAPI(title="sysmaint API", version="0.1.0")
    # Composition root: one runtime per process, shared by every request.
    app.state.runtime = runtime or MaintenanceRuntime()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/facts")
    def get_facts(request: Request, refresh: bool = False) -> dict[str, object]:
        return _runtime(request).facts(refresh=refresh).to_dict()

    @app.get("/actions")
    def list_actions(request: Request) -> dict[str, object]:
        return {"actions": _runtime(request).list_actions()}

    @app.post("/actions/run")
    def run_actions(request: Request, body: RunIn) -> dict[str, object]:
        try:
            batch = _runtime(request).run(body.action_ids, refresh=body.refresh)
        except UnknownActionError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        logger.info("api_batch_completed actions=%d cancelled=%s", len(batch), batch.cancelled)
        return batch.to_dict()

    @app.post("/actions/{action_id}/revert")
    def revert_action(request: Request, action_id: str) -> dict[str, object]:
        try:
            return _runtime(request).revert(action_id).to_dict()
        except UnknownActionError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/restore")
    def restore(request: Request) -> dict[str, object]:
        try:
            return _runtime(request).restore().to_dict()
        except UnknownActionError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    return app


app = create_app()
