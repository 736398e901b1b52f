"""Read-only HTTP API exposing recent risk snapshots."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from services.telemetry import Telemetry

from .risk_engine.metrics import MetricRegistry
from .risk_engine.risk_loop import SnapshotHistory


MAX_SNAPSHOT_LIMIT = 100


def create_app(
    history: SnapshotHistory,
    *,
    telemetry: Optional[Telemetry] = None,
    metrics: Optional[MetricRegistry] = None,
) -> FastAPI:
    app = FastAPI(title="RWA Risk Monitor")
    app.state.history = history
    app.state.telemetry = telemetry
    app.state.metrics = metrics

    @app.get("/api/snapshot", response_class=JSONResponse)
    async def api_snapshot(request: Request) -> JSONResponse:
        snapshot = request.app.state.history.latest()
        if snapshot is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No risk snapshot has been produced yet.")
        return JSONResponse(snapshot.to_payload())

    @app.get("/api/snapshots", response_class=JSONResponse)
    async def api_snapshots(
        request: Request,
        limit: int = Query(10, ge=1, le=MAX_SNAPSHOT_LIMIT),
    ) -> JSONResponse:
        snapshots = request.app.state.history.recent(limit)
        return JSONResponse({"snapshots": [snapshot.to_payload() for snapshot in snapshots]})

    @app.get("/api/metrics", response_class=JSONResponse)
    async def api_metrics(request: Request) -> JSONResponse:
        registry: Optional[MetricRegistry] = request.app.state.metrics
        return JSONResponse({"counters": registry.as_dict() if registry else {}})

    @app.get("/health", response_class=JSONResponse)
    async def health(request: Request) -> JSONResponse:
        telemetry_state: Optional[Telemetry] = request.app.state.telemetry
        payload = telemetry_state.health_snapshot() if telemetry_state else {"status": "healthy", "services": {}}
        latest = request.app.state.history.latest()
        payload["last_snapshot_at"] = latest.timestamp.isoformat() if latest else None
        payload["snapshots"] = len(request.app.state.history)
        return JSONResponse(payload)

    return app


__all__ = ["create_app"]
