"""Flask JSON API in front of the portal client.

One portal session is kept in module state, together with the dashboard
from its login and the speed monitor following its live stream. The
endpoints mirror the app screens: login, dashboard, usage, payments,
settings.
"""

import functools
import json
import logging
import threading
import time

from flask import Flask, Response, jsonify, request, stream_with_context

from .client import SESSION_EXPIRED, PortalSessionClient
from .config import DEFAULTS, INT_KEYS
from .live import DEFAULT_HISTORY, SpeedMonitor
from .models import Credentials, LoginOutcome

log = logging.getLogger("selfcare.web")
audit_log = logging.getLogger("selfcare.audit")

# Seconds between SSE keepalive comments while no sample arrives
SSE_KEEPALIVE = 15

SETTINGS_KEYS = set(DEFAULTS)

app = Flask(__name__)

_config_manager = None
_state = {
    "client": None,
    "dashboard": None,
    "monitor": None,
    "error": None,
    "last_login": None,
}
_state_lock = threading.Lock()


def init_config(config_manager):
    """Set the config manager."""
    global _config_manager
    _config_manager = config_manager


def update_state(client=None, dashboard=None, monitor=None, error=None):
    """Update the shared web state (thread-safe)."""
    with _state_lock:
        if client is not None:
            _state["client"] = client
            _state["last_login"] = time.strftime("%Y-%m-%d %H:%M:%S")
        if dashboard is not None:
            _state["dashboard"] = dashboard
            _state["error"] = None
        if monitor is not None:
            _state["monitor"] = monitor
        if error is not None:
            _state["error"] = str(error)


def get_state() -> dict:
    """Return a snapshot of the shared web state (thread-safe)."""
    with _state_lock:
        return dict(_state)


def reset_session():
    """Stop the speed monitor and forget the current portal session."""
    with _state_lock:
        client = _state["client"]
        monitor = _state["monitor"]
        _state.update(client=None, dashboard=None, monitor=None, error=None, last_login=None)
    if monitor is not None:
        monitor.stop()
    if client is not None:
        client.close()


def login_with(credentials: Credentials) -> LoginOutcome:
    """Log in on a fresh session; on success it replaces the current one."""
    kwargs = _config_manager.client_kwargs() if _config_manager else {}
    client = PortalSessionClient(**kwargs)
    outcome = client.login(credentials.customer_id, credentials.password)
    if not outcome.success:
        client.close()
        update_state(error=outcome.reason)
        return outcome

    reset_session()
    log.info("Portal session active for %s", credentials.customer_id)
    history = _config_manager.get("speed_history") if _config_manager else DEFAULT_HISTORY
    monitor = SpeedMonitor(client, history_size=history)
    monitor.start()
    update_state(client=client, dashboard=outcome.dashboard, monitor=monitor)
    return outcome


def require_session(f):
    """Decorator: 401 unless a portal session is active."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_state()["client"] is None:
            return jsonify({"error": "Not logged in"}), 401
        return f(*args, **kwargs)
    return decorated


def _flag(value):
    return value in (True, 1, "1", "true", "on", "yes")


@app.route("/api/login", methods=["POST"])
def api_login():
    data = request.get_json(silent=True) or request.form
    customer_id = str(data.get("customer_id") or "").strip()
    password = str(data.get("password") or "")
    if not customer_id or not password:
        return jsonify({"success": False, "error": "customer_id and password are required"}), 400

    outcome = login_with(Credentials(customer_id, password))
    if not outcome.success:
        audit_log.warning("Portal login failed: customer=%s ip=%s", customer_id, request.remote_addr)
        return jsonify(outcome.to_dict()), 401

    audit_log.info("Portal login successful: customer=%s ip=%s", customer_id, request.remote_addr)
    if _flag(data.get("remember")) and _config_manager:
        _config_manager.save({"portal_user": customer_id, "portal_password": password})
    return jsonify(outcome.to_dict())


@app.route("/api/logout", methods=["POST"])
def api_logout():
    reset_session()
    if _config_manager:
        _config_manager.clear_credentials()
    audit_log.info("Logout: ip=%s", request.remote_addr)
    return jsonify({"success": True})


@app.route("/api/status")
def api_status():
    state = get_state()
    client = state["client"]
    monitor = state["monitor"]
    return jsonify({
        "logged_in": client is not None,
        "customer_id": client.customer_id if client else None,
        "last_login": state["last_login"],
        "monitor_running": bool(monitor and monitor.is_running),
        "error": state["error"],
    })


@app.route("/api/dashboard")
@require_session
def api_dashboard():
    state = get_state()
    if not _flag(request.args.get("refresh")):
        return jsonify(state["dashboard"].to_dict())

    outcome = state["client"].fetch_dashboard()
    if not outcome.success:
        update_state(error=outcome.reason)
        status = 401 if outcome.reason == SESSION_EXPIRED else 502
        return jsonify({"error": outcome.reason}), status
    update_state(dashboard=outcome.dashboard)
    return jsonify(outcome.dashboard.to_dict())


@app.route("/api/usage")
@require_session
def api_usage():
    entries = get_state()["client"].fetch_usage_history()
    return jsonify([e.to_dict() for e in entries])


@app.route("/api/payments")
@require_session
def api_payments():
    records = get_state()["client"].fetch_payment_history()
    return jsonify([r.to_dict() for r in records])


@app.route("/api/speed")
@require_session
def api_speed():
    state = get_state()
    monitor = state["monitor"]
    latest = monitor.latest if monitor else None
    if latest is None:
        latest = state["client"].fetch_live_speed()
        history = []
    else:
        history = [s.to_dict() for s in monitor.history]
    return jsonify({"latest": latest.to_dict(), "history": history})


@app.route("/api/speed/stream")
@require_session
def api_speed_stream():
    monitor = get_state()["monitor"]
    if monitor is None or not monitor.is_running:
        return jsonify({"error": "Live speed monitor is not running"}), 503

    def generate():
        seen = 0
        while True:
            seen, sample = monitor.wait_for_sample(seen, timeout=SSE_KEEPALIVE)
            if sample is None:
                if not monitor.is_running:
                    return
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(sample.to_dict())}\n\n"

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.route("/api/settings")
def api_settings_get():
    if not _config_manager:
        return jsonify({"error": "Not configured"}), 503
    return jsonify(_config_manager.get_public())


@app.route("/api/settings", methods=["POST"])
def api_settings_save():
    if not _config_manager:
        return jsonify({"error": "Not configured"}), 503
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"success": False, "error": "JSON object expected"}), 400
    unknown = sorted(set(data) - SETTINGS_KEYS)
    if unknown:
        return jsonify({"success": False, "error": f"Unknown keys: {', '.join(unknown)}"}), 400
    for key in INT_KEYS & set(data):
        try:
            if int(data[key]) <= 0:
                raise ValueError
        except (ValueError, TypeError):
            return jsonify({"success": False, "error": f"{key} must be a positive integer"}), 400
    _config_manager.save(data)
    return jsonify({"success": True})
