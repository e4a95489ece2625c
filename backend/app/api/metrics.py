"""Prometheus-compatible metrics endpoint."""

from fastapi import APIRouter, Request, Response

from app.monitoring.metrics import realtime_rooms, realtime_sessions, realtime_users
from app.monitoring.registry import registry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics(request: Request) -> Response:
    """Expose collected metrics for Prometheus scraping.

    Occupancy gauges are refreshed from the live state on every scrape so they
    do not lag behind until the next maintenance sweep.
    """

    services = getattr(request.app.state, "realtime", None)
    if services is not None:
        connected = services.store.connected_user_count()
        realtime_rooms.set(services.store.room_count)
        realtime_users.labels("connected").set(connected)
        realtime_users.labels("disconnected").set(services.store.user_count - connected)
        realtime_sessions.set(len(services.sessions))

    return Response(content=registry.render(), media_type="text/plain; version=0.0.4")
