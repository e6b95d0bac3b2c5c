"""
CDM Triage API — FastAPI endpoints.

Exposes the triage service via a REST API for:
- Working-set inspection (list, search, lane stats, nightmare watch)
- Bulk CSV import (request body is streamed straight into the pipeline)
- Policy management and re-triage
- Monte Carlo refinement of a single event
"""

from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from cdm_triage.errors import EventNotFound, IngestionError, SimulationError
from cdm_triage.models.event import TriageLane
from cdm_triage.models.policy import PolicyConfig
from cdm_triage.service import TriageService
from cdm_triage.settings import TriageSettings, configure_logging
from cdm_triage.store.event_store import SqliteEventStore


def create_app(
    service: Optional[TriageService] = None,
    settings: Optional[TriageSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or (service.settings if service else TriageSettings())
    configure_logging(settings.log_level)

    app = FastAPI(
        title="CDM Triage API",
        description="Conjunction event risk triage",
        version="0.1.0",
    )

    svc = service or TriageService(
        store=SqliteEventStore(settings.db_path),
        settings=settings,
    )
    svc.seed_if_empty()

    app.state.service = svc

    @app.exception_handler(EventNotFound)
    async def event_not_found(request: Request, exc: EventNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    # === EVENTS ===

    @app.get("/events")
    def list_events(q: str = "", lane: Optional[TriageLane] = None):
        """Stored events, highest analytic Pc first."""
        return [e.model_dump(mode="json") for e in svc.list_events(q, lane)]

    @app.get("/events/stats")
    def event_stats():
        """Lane counts."""
        return svc.stats()

    @app.get("/events/nightmare")
    def nightmare():
        """High urgency + high risk."""
        return [e.model_dump(mode="json") for e in svc.nightmare_watch()]

    @app.get("/events/{event_id}")
    def get_event(event_id: str):
        return svc.get_event(event_id).model_dump(mode="json")

    @app.delete("/events")
    def clear_events():
        svc.clear()
        return {"status": "cleared"}

    @app.post("/events/seed")
    def seed_events(count: int = Query(default=50, ge=1, le=10_000)):
        """Synthetic demo events."""
        events = svc.seed(count)
        return {"status": "seeded", "count": len(events)}

    @app.post("/events/import")
    async def import_events(request: Request):
        """Import a delimited CDM export sent as the raw request body."""
        length = request.headers.get("content-length")
        total = int(length) if length and length.isdigit() else None
        try:
            result = await svc.import_stream(request.stream(), total)
        except IngestionError:
            raise HTTPException(500, "Import failed")
        if not result.succeeded:
            raise HTTPException(400, {"message": "Import failed", "imported": result.count})
        return result.model_dump(mode="json")

    @app.post("/events/{event_id}/refine")
    async def refine_event(
        event_id: str,
        samples: Optional[int] = Query(default=None, ge=1, le=1_000_000),
    ):
        """Run Monte Carlo on one event and persist the re-triaged copy."""
        try:
            event, result = await svc.refine_event(event_id, samples)
        except SimulationError as exc:
            raise HTTPException(422, str(exc))
        return {
            "event": event.model_dump(mode="json"),
            "simulation": result.model_dump(mode="json"),
        }

    # === POLICY ===

    @app.get("/policy")
    def get_policy():
        return svc.policy.model_dump()

    @app.put("/policy")
    def update_policy(policy: PolicyConfig):
        """Replace the policy. Lanes are not recomputed until it is applied."""
        svc.set_policy(policy)
        return policy.model_dump()

    @app.post("/policy/apply")
    def apply_policy():
        """Re-triage and persist every stored event under the current policy."""
        events = svc.apply_policy()
        return {"status": "applied", "events": len(events), "stats": svc.stats()}

    return app


# Default application instance
app = create_app()
