from contextlib import nullcontext
from typing import List, Optional

from flask import current_app, has_app_context

from pyramid import db, socketio
from .errors import NotFound

_janitor_apps = set()


def sweep_idle_rooms(app, now: Optional[float] = None) -> List[str]:
    """Delete rooms with no mutation for ROOM_IDLE_TIMEOUT_SEC.

    Clients of a collected room are told via ``session_ended``; their next
    fetch answers NotFound.
    """
    ext = app.extensions['pyramid']
    store, channel = ext.store, ext.channel
    timeout = int(app.config.get('ROOM_IDLE_TIMEOUT_SEC', 1800))
    deleted = []
    with _app_context(app):
        now = store.now() if now is None else now
        cutoff = now - timeout
        for room_id in store.idle_room_ids(cutoff):
            try:
                idle_for = _delete_if_idle(store, room_id, now, cutoff)
            except NotFound:
                continue
            if idle_for is None:
                continue
            deleted.append(room_id)
            channel.session_ended(room_id)
            app.logger.info(f"[sweep] room={room_id} idle_for={idle_for}s deleted")
        if deleted:
            app.logger.info(f"[sweep] removed={len(deleted)} cutoff={cutoff}")
    return deleted


def _delete_if_idle(store, room_id, now, cutoff) -> Optional[int]:
    """Seconds the room sat idle when deleted, or None if it was touched meanwhile."""
    with store.room_lock(room_id):
        room = store.get_room(room_id)
        # A mutation may have landed between listing and locking
        if room.last_activity >= cutoff:
            return None
        idle_for = int(now - room.last_activity)
        try:
            store.delete_room(room_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    return idle_for


def start_janitor(app) -> bool:
    """Run sweep_idle_rooms every ROOM_SWEEP_INTERVAL_SEC in a background task.

    - No-ops in TESTING mode
    - At most one janitor per app
    """
    if app.config.get('TESTING'):
        return False
    if id(app) in _janitor_apps:
        return False
    _janitor_apps.add(id(app))
    interval = int(app.config.get('ROOM_SWEEP_INTERVAL_SEC', 300))

    def _worker():
        try:
            hb = int(app.config.get('JANITOR_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        while True:
            if hb and hb > 0:
                slept = 0
                while slept < interval:
                    step = min(hb, interval - slept)
                    socketio.sleep(step)
                    slept += step
                    app.logger.info(f"[janitor-heartbeat] next_sweep_in={max(0, interval - slept)}s")
            else:
                socketio.sleep(interval)
            try:
                sweep_idle_rooms(app)
            except Exception as exc:
                # keep the loop alive; the next pass retries
                app.logger.error(f"[sweep-failed] error={exc}")

    socketio.start_background_task(_worker)
    app.logger.info(f"[janitor-start] interval={interval}s timeout={app.config.get('ROOM_IDLE_TIMEOUT_SEC')}s")
    return True


def _app_context(app):
    if has_app_context() and current_app._get_current_object() is app:
        return nullcontext()
    return app.app_context()
