# Overview: Post-commit event delivery for ledger changes (activity log, notification fan-out).

"""
Event Sink

Ledger services call emit_event() only after their unit of work committed.
Delivery is best-effort: a failing or slow sink is logged and never fails or
rolls back the financial mutation that triggered it.

Sinks:
- EventSink: interface, notify(event_kind, entity_type, entity_id, actor_id, summary)
- ActivityLogSink: default, writes one ActivityLog row per event
- BackgroundEventSink: wraps another sink and delivers on a daemon thread
  (enabled with EVENT_SINK_ASYNC)
"""

from __future__ import annotations

import threading

from flask import current_app

from ..extensions import db
from ..models import ActivityLog


class EventSink:
    """Receiver of "transaction happened" events."""

    def notify(
        self,
        event_kind: str,
        entity_type: str,
        entity_id: int | None,
        actor_id: int | None,
        summary: str,
    ) -> None:
        raise NotImplementedError


class ActivityLogSink(EventSink):
    def notify(self, event_kind, entity_type, entity_id, actor_id, summary):
        db.session.add(ActivityLog(
            event_kind=event_kind,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_id,
            summary=summary,
        ))
        db.session.commit()


class BackgroundEventSink(EventSink):
    """
    Deliver to `inner` on a daemon thread inside a fresh app context.

    The request thread returns as soon as the thread is started.
    """

    def __init__(self, inner: EventSink, app):
        self.inner = inner
        self.app = app

    def notify(self, event_kind, entity_type, entity_id, actor_id, summary):
        threading.Thread(
            target=self._deliver,
            args=(event_kind, entity_type, entity_id, actor_id, summary),
            daemon=True,
            name="event-sink",
        ).start()

    def _deliver(self, event_kind, entity_type, entity_id, actor_id, summary):
        with self.app.app_context():
            try:
                self.inner.notify(event_kind, entity_type, entity_id, actor_id, summary)
            except Exception:
                self.app.logger.warning("Event sink delivery failed for %s", event_kind, exc_info=True)
                db.session.rollback()
            finally:
                db.session.remove()


def install_event_sink(app, sink: EventSink | None = None) -> EventSink:
    if sink is None:
        sink = ActivityLogSink()
        if app.config.get("EVENT_SINK_ASYNC"):
            sink = BackgroundEventSink(sink, app)
    app.extensions["event_sink"] = sink
    return sink


def emit_event(
    event_kind: str,
    entity_type: str,
    entity_id: int | None,
    actor_id: int | None,
    summary: str,
) -> None:
    """Fire-and-forget; call only after the unit of work committed."""
    sink = current_app.extensions.get("event_sink")
    if sink is None:
        return
    try:
        sink.notify(event_kind, entity_type, entity_id, actor_id, summary)
    except Exception:
        current_app.logger.warning("Event sink failed for %s %s", event_kind, entity_id, exc_info=True)
        db.session.rollback()
