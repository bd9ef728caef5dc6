"""Metrics endpoint exposing the in-memory limiter metrics."""

from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/metrics")
async def get_metrics(request: Request) -> Dict[str, Any]:
    """Return counters and latency summaries recorded by the limiter."""
    recorder = getattr(request.app.state, "recorder", None)
    get_summary = getattr(recorder, "get_summary", None)
    if get_summary is None:
        return {"counters": {}, "distributions": {}}
    return get_summary()
