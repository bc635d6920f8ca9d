from fastapi import APIRouter, Request

from movieclub.core.metrics import counters_snapshot
from movieclub.schemas import StatusSchema

router = APIRouter()


@router.get("/status", response_model=StatusSchema)
async def get_status(request: Request):
    """Counts of tracked movies, likes and links, plus event counters when metrics are enabled."""
    store = request.app.state.store
    stats = store.stats()
    counters = await counters_snapshot(enabled=request.app.state.settings.metrics_enabled)
    return StatusSchema(status="ok", counters=counters, **stats)
