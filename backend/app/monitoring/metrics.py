"""Metric definitions for the realtime voting core."""

from __future__ import annotations

from .registry import registry


realtime_sessions = registry.gauge(
    "poker_active_sessions",
    "Number of live websocket connections tracked by the session registry.",
)

realtime_rooms = registry.gauge(
    "poker_rooms",
    "Number of rooms held by the domain store at the last maintenance sweep.",
)

realtime_users = registry.gauge(
    "poker_users",
    "Number of users held by the domain store at the last maintenance sweep.",
    label_names=("state",),
)

realtime_events_total = registry.counter(
    "poker_events_total",
    "Count of envelopes processed by the message router.",
    label_names=("type", "direction"),
)

realtime_malformed_messages_total = registry.counter(
    "poker_malformed_messages_total",
    "Inbound messages dropped because they could not be decoded or validated.",
)

realtime_capacity_rejections_total = registry.counter(
    "poker_capacity_rejections_total",
    "Connections rejected because a capacity limit was reached.",
    label_names=("limit",),
)

realtime_joins_total = registry.counter(
    "poker_joins_total",
    "Successful joins grouped by how the identity was resolved.",
    label_names=("outcome",),
)

realtime_sweeper_evictions_total = registry.counter(
    "poker_sweeper_evictions_total",
    "Entities removed by the maintenance sweeper.",
    label_names=("kind",),
)

realtime_delivery_failures_total = registry.counter(
    "poker_delivery_failures_total",
    "State broadcasts that could not be delivered to a connection.",
    label_names=("reason",),
)
