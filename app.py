from flask import Flask, jsonify, request, session
# Imports Flask framework and its utilities

from flask_cors import CORS
# Imports CORS (Cross-Origin Resource Sharing)

import logging
import time
import uuid

from config import CONFIG
from decoy_engine import SessionController
from leaderboard import AttemptRecorder, init_leaderboard
from levels import get_level, list_levels


app = Flask(__name__)
app.secret_key = CONFIG['secret_key']

CORS(app, supports_credentials=True)
# supports_credentials=True allows cookies/sessions to be sent cross-origin

leaderboard = init_leaderboard()
# Firestore when it initializes, otherwise the local JSON leaderboard

clock = time.monotonic
# Time source for session clocks; replaced in tests

# Active phishing sessions stored in memory (keyed by session_id)
_active_sessions = {}


def _error(message, code):
    return jsonify({"status": "error", "message": message}), code


def _current_user(data):
    """Logged-in user from the Flask session, or the id the client sent. None when neither is set."""
    return session.get('user_id') or data.get('user_id')


def _lookup(data):
    """Find the controller for a request body. Returns (controller, error_response)."""
    session_id = data.get('session_id')
    if not session_id:
        return None, _error("session_id is required", 400)
    controller = _active_sessions.get(session_id)
    if controller is None:
        return None, _error("No active session", 404)
    return controller, None


def _state(controller, **extra):
    payload = {"status": "success", "session": controller.snapshot()}
    payload.update(extra)
    return jsonify(payload)


def _release_if_finished(session_id, controller):
    """Drop a session once it has ended; its final snapshot is already in the response."""
    if not controller.session.is_running and _active_sessions.get(session_id) is controller:
        _active_sessions.pop(session_id, None)
        # A restart under the same id may already have replaced it


# ── Levels ────────────────────────────────────────────────────
@app.route('/api/phishing/levels', methods=['GET'])
def phishing_levels():
    """Lists the playable levels for the level picker."""
    return jsonify([level.to_summary() for level in list_levels()])


# ── Session lifecycle ─────────────────────────────────────────
@app.route('/api/phishing/start', methods=['POST'])
def phishing_start():
    """Starts a fresh play-through of a level, replacing any previous one for this session id."""
    data = request.json or {}
    level_id = data.get('level_id')
    if not level_id:
        return _error("level_id is required", 400)

    try:
        level = get_level(level_id)
    except KeyError:
        return _error(f"Unknown level: {level_id}", 404)

    session_id = data.get('session_id') or uuid.uuid4().hex
    previous = _active_sessions.pop(session_id, None)
    if previous is not None:
        previous.abandon()
        # Restarting abandons the old run without saving it

    recorder = AttemptRecorder(leaderboard, _current_user(data), data.get('username'))
    controller = SessionController(
        level,
        save_attempt=recorder.save_attempt,
        load_prior_attempt=recorder.load_prior_attempt,
        time_source=clock,
    )
    controller.start()
    _active_sessions[session_id] = controller

    return _state(controller, session_id=session_id, prior_attempt=controller.prior_attempt)


@app.route('/api/phishing/abandon', methods=['POST'])
def phishing_abandon():
    data = request.json or {}
    controller, error = _lookup(data)
    if error:
        return error
    controller.abandon()
    _active_sessions.pop(data['session_id'], None)
    # Another request may have dropped it already
    return jsonify({"status": "success"})


@app.route('/api/phishing/session/<session_id>', methods=['GET'])
def phishing_session(session_id):
    """Current snapshot for the render surface."""
    controller = _active_sessions.get(session_id)
    if controller is None:
        return _error("No active session", 404)
    controller.sync_clock()
    response = _state(controller)
    _release_if_finished(session_id, controller)
    return response


# ── Input events ──────────────────────────────────────────────
@app.route('/api/phishing/click', methods=['POST'])
def phishing_click():
    """One user click: {session_id, action_id, is_real_hint?}."""
    data = request.json or {}
    controller, error = _lookup(data)
    if error:
        return error

    outcome = controller.handle_input(data.get('action_id'), data.get('is_real_hint'))
    response = _state(controller, classification=outcome.value if outcome else None)
    _release_if_finished(data['session_id'], controller)
    return response


@app.route('/api/phishing/popup', methods=['POST'])
def phishing_popup():
    """A click on a decoy pop-up's close or act control."""
    data = request.json or {}
    controller, error = _lookup(data)
    if error:
        return error

    try:
        outcome = controller.click_popup(data.get('popup_id'), data.get('control'))
    except ValueError as e:
        return _error(str(e), 400)
    response = _state(controller, classification=outcome.value if outcome else None)
    _release_if_finished(data['session_id'], controller)
    return response


@app.route('/api/phishing/tick', methods=['POST'])
def phishing_tick():
    """Heartbeat for the countdown display: delivers the seconds that are due, never more."""
    data = request.json or {}
    controller, error = _lookup(data)
    if error:
        return error

    controller.sync_clock()
    expired = controller.session.fail_reason == "timeout"
    # Seconds come only from the server clock, so a client ticking once a second never runs ahead

    response = _state(controller, expired=expired)
    _release_if_finished(data['session_id'], controller)
    return response


# ── Leaderboard ───────────────────────────────────────────────
@app.route('/api/phishing/leaderboard/<level_id>', methods=['GET'])
def phishing_leaderboard(level_id):
    try:
        get_level(level_id)
    except KeyError:
        return _error(f"Unknown level: {level_id}", 404)
    return jsonify(leaderboard.top(level_id, CONFIG['leaderboard_limit']))


@app.route('/api/phishing/standings', methods=['GET'])
def phishing_standings():
    """Players ranked by their summed best scores across all levels."""
    return jsonify(leaderboard.standings(CONFIG['leaderboard_limit']))


if __name__ == '__main__':
    logging.basicConfig(
        level=CONFIG['log_level'],
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    app.run(debug=True, host='0.0.0.0', port=CONFIG['port'])
    # debug=True enables auto-reload and error pages, host='0.0.0.0' makes it accessible from any network interface
