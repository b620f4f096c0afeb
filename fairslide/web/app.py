# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
FairSlide JSON API.
Serves next-photo selections to slideshow viewers and reports geolocation
progress. Each viewer's selection session is kept server side, keyed by an
id stored in the Flask session cookie.
"""

import logging
import secrets
import threading
import time
import uuid
from typing import Optional

from flask import Flask, jsonify, session

from ..config import FairSlideConfig, config_mtime, config_to_dict, load_config, validate_config
from ..enrichment import collect_status
from ..index_store import IndexStore
from ..selection import NoPhotosAvailable, SelectionSession, SlideSelector
from ..trigger import EnrichmentTrigger

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "fairslide_sid"

# Idle lifetime of a selection session when sessions never expire for rescans
SESSION_IDLE_SECONDS = 3600
MAX_SESSIONS = 1000


def create_app(
    config: FairSlideConfig,
    selector: Optional[SlideSelector] = None,
    trigger: Optional[EnrichmentTrigger] = None,
    store: Optional[IndexStore] = None
) -> Flask:
    """
    Create the Flask application.

    Args:
        config: FairSlide configuration.
        selector: SlideSelector to use. Built from the config when None.
        trigger: Background geolocation trigger. Built from the config when
            None and geolocation is enabled.
        store: Index store. Built from the config when None.

    Returns:
        Flask application.
    """
    app = Flask(__name__)
    app.secret_key = config.web.secret_key or secrets.token_hex(32)

    if store is None:
        store = selector.store if selector else IndexStore(config.storage.index_directory)

    if trigger is None and selector is not None:
        trigger = selector.trigger
    if trigger is None and config.geolocation.enabled:
        trigger = EnrichmentTrigger.from_config(config)

    if selector is None:
        selector = SlideSelector(store, config.selection, trigger=trigger)

    # Store references
    app.fairslide_config = config
    app.config_mtime = config_mtime(config.config_path)
    app.index_store = store
    app.selector = selector
    app.trigger = trigger

    # Selection sessions and their last access time, by viewer id
    app.selection_sessions = {}
    app.session_last_seen = {}
    app.sessions_lock = threading.Lock()

    def reload_config_if_changed() -> None:
        """Pick up edits to the config file without restarting."""
        path = app.fairslide_config.config_path
        mtime = config_mtime(path)
        if mtime is None or mtime == app.config_mtime:
            return

        logger.info(f"Config file changed, reloading {path}")
        new_config = load_config(path)
        for error in validate_config(new_config):
            logger.warning(f"Config: {error}")

        app.fairslide_config = new_config
        app.config_mtime = mtime
        app.selector.settings = new_config.selection

    def session_idle_seconds() -> float:
        rescan_minutes = app.fairslide_config.selection.rescan_after_minutes
        return rescan_minutes * 60 if rescan_minutes > 0 else SESSION_IDLE_SECONDS

    def store_session(sid: str, selection_session: SelectionSession) -> None:
        """Keep a viewer's session and drop sessions idle for too long."""
        now = time.time()
        with app.sessions_lock:
            app.selection_sessions[sid] = selection_session
            app.session_last_seen[sid] = now

            cutoff = now - session_idle_seconds()
            idle = [key for key, seen in app.session_last_seen.items() if seen < cutoff]

            overflow = len(app.session_last_seen) - len(idle) - MAX_SESSIONS
            if overflow > 0:
                active = sorted(
                    (key for key in app.session_last_seen if key not in idle),
                    key=app.session_last_seen.get
                )
                idle.extend(active[:overflow])

            for key in idle:
                app.selection_sessions.pop(key, None)
                app.session_last_seen.pop(key, None)

        if idle:
            logger.debug(f"Dropped {len(idle)} idle selection session(s)")

    def drop_session(sid: str) -> None:
        with app.sessions_lock:
            app.selection_sessions.pop(sid, None)
            app.session_last_seen.pop(sid, None)

    def viewer_id() -> str:
        sid = session.get(SESSION_ID_KEY)
        if not sid:
            sid = uuid.uuid4().hex
            session[SESSION_ID_KEY] = sid
        return sid

    # Routes

    @app.route('/api/next')
    def api_next():
        """Select the next photo for this viewer."""
        reload_config_if_changed()
        sid = viewer_id()

        with app.sessions_lock:
            previous = app.selection_sessions.get(sid)

        try:
            selection, new_session = app.selector.select_next(
                app.fairslide_config.playlists,
                previous,
                config_mtime=app.config_mtime,
            )
        except NoPhotosAvailable as e:
            logger.warning(f"No photo available: {e}")
            drop_session(sid)
            return jsonify({"error": str(e)}), 404
        except Exception as e:
            logger.error(f"Error selecting next photo: {e}", exc_info=True)
            return jsonify({"error": str(e)}), 500

        store_session(sid, new_session)

        return jsonify(selection.to_dict())

    @app.route('/api/session', methods=['DELETE'])
    def api_reset_session():
        """Forget this viewer's selection state."""
        sid = session.get(SESSION_ID_KEY)
        if sid:
            drop_session(sid)
        return jsonify({"success": True})

    @app.route('/api/geolocation/status')
    def api_geolocation_status():
        """Geolocation progress per picture index and overall."""
        status = collect_status(str(app.index_store.base_dir))
        status["lock"] = app.trigger.lock_status() if app.trigger else None
        status["enabled"] = app.trigger is not None
        return jsonify(status)

    @app.route('/api/geolocation/process', methods=['POST'])
    def api_geolocation_process():
        """Start a background geolocation pass."""
        if app.trigger is None:
            return jsonify({"error": "Geolocation is disabled"}), 503

        try:
            triggered = app.trigger.trigger(triggered_by="api")
            return jsonify({"success": True, "triggered": triggered})
        except Exception as e:
            logger.error(f"Error triggering geolocation: {e}")
            return jsonify({"error": str(e)}), 500

    @app.route('/api/status')
    def api_status():
        """Get current status."""
        with app.sessions_lock:
            viewers = len(app.selection_sessions)

        return jsonify({
            "running": True,
            "config_path": app.fairslide_config.config_path,
            "playlists": len(app.fairslide_config.playlists),
            "index_directory": str(app.index_store.base_dir),
            "viewers": viewers,
        })

    @app.route('/api/config', methods=['GET'])
    def api_get_config():
        """Get current configuration, without the cookie signing key."""
        data = config_to_dict(app.fairslide_config)
        data.get('web', {}).pop('secret_key', None)
        return jsonify(data)

    return app


def run_web_server(config: FairSlideConfig, app: Optional[Flask] = None) -> None:
    """
    Run the web server (blocking).

    Args:
        config: FairSlide configuration.
        app: Application to serve. Created from the config when None.
    """
    if not config.web.enabled:
        logger.info("Web interface disabled")
        return

    app = app or create_app(config)

    logger.info(f"Starting web server on {config.web.host}:{config.web.port}")

    # Disable Flask's default logging for production
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    app.run(
        host=config.web.host,
        port=config.web.port,
        debug=False,
        threaded=True
    )
