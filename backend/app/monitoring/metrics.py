"""Metric definitions for chat synchronization and external integrations."""

from __future__ import annotations

from .registry import registry


store_writes_total = registry.counter(
    "store_writes_total",
    "Document writes issued against the document store.",
    label_names=("collection", "operation"),
)

store_listener_errors_total = registry.counter(
    "store_listener_errors_total",
    "Snapshot listener callbacks that raised.",
    label_names=("collection",),
)

store_listeners = registry.gauge(
    "store_active_listeners",
    "Live query subscriptions currently registered.",
    label_names=("collection",),
)

typing_updates_total = registry.counter(
    "typing_updates_total",
    "Typing status writes by action and outcome.",
    label_names=("action", "outcome"),
)

feed_events_total = registry.counter(
    "feed_events_total",
    "Message feed side effects (received, sent, failed, dropped).",
    label_names=("event",),
)

group_operations_total = registry.counter(
    "group_operations_total",
    "Group membership operations by outcome.",
    label_names=("operation", "outcome"),
)

auth_events_total = registry.counter(
    "auth_events_total",
    "Identity flow attempts by outcome.",
    label_names=("event", "outcome"),
)

assistant_requests_total = registry.counter(
    "assistant_requests_total",
    "Calls to the external search and completion APIs.",
    label_names=("client", "outcome"),
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by websocket sessions and the broker.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic",),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Broker publish failures.",
    label_names=("topic", "reason"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of broker reconnections.",
    label_names=("reason",),
)
