#!/usr/bin/env python3
"""
Connections Web Server
======================

JSON API for the Connections board: serves normalized puzzles with a
reproducible layout, checks guesses, and keeps each player's run in sync
between the local run store and the signed-in user's cloud record.

Usage:
    python connections_server.py

Then open http://localhost:8080/status in your browser.

Clients identify their device with an X-Session-Id header (local run
store namespace) and, when signed in, a Supabase bearer token. The
/runs/* routes refuse requests without the header, so two anonymous
clients never share a local namespace.
"""

import functools
import os

from flask import Blueprint, Flask, current_app, jsonify, request

from auth import current_identity, require_admin, require_user
from game_constants import DEMO_PUZZLE
from game_logic import group_name, layout, new_seed
from puzzle_normalizer import NormalizationError, normalize
from puzzle_store import LocalRunStore
from run_persistence import PersistenceCoordinator, now_ms
from run_state import RunState

board_bp = Blueprint('board', __name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _session_id():
    return request.headers.get('X-Session-Id', '').strip()


def require_session_id(f):
    """
    Decorator: require the device's X-Session-Id header. Returns 400 otherwise.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not _session_id():
            return jsonify({'error': 'X-Session-Id header required'}), 400
        return f(*args, **kwargs)
    return decorated


def _coordinator():
    """Persistence coordinator for the requesting device and user."""
    namespace = _session_id()
    local_store = LocalRunStore(current_app.config['RUNS_DIR'], namespace=namespace)
    return PersistenceCoordinator(
        local_store,
        current_app.config['DOCUMENT_STORE'],
        identity=current_identity,
    )


def load_puzzle(puzzle_id):
    """Normalized puzzle, or None when it's missing or unplayable."""
    if puzzle_id == DEMO_PUZZLE['id']:
        raw = DEMO_PUZZLE
    else:
        raw = current_app.config['PUZZLE_STORE'].get_puzzle(puzzle_id)
    if raw is None:
        return None

    try:
        return normalize(raw, puzzle_id)
    except NormalizationError as e:
        print(f"[Puzzle] {puzzle_id} unavailable: {e}")
        return None


def _unavailable():
    return jsonify({'error': 'Puzzle unavailable'}), 404


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@board_bp.route('/status')
def status():
    """Return server status including database backend type."""
    store_type = type(current_app.config['PUZZLE_STORE']).__name__
    is_supabase = store_type == 'PuzzleStoreSupabase'

    return jsonify({
        'storage_backend': 'supabase' if is_supabase else 'custom',
        'store_type': store_type,
        'connected': True
    })


@board_bp.route('/puzzles', methods=['GET'])
def list_puzzles():
    """List published puzzles for the browse grid."""
    max_results = request.args.get('max', 60, type=int)
    max_results = max(1, min(100, max_results))

    try:
        puzzles = current_app.config['PUZZLE_STORE'].list_puzzles(max_results)
    except Exception as e:
        return jsonify({'error': str(e)}), 500

    return jsonify({'puzzles': puzzles})


@board_bp.route('/puzzles', methods=['POST'])
@require_user
def create_puzzle():
    """Validate and store a new puzzle for the signed-in user."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    if not isinstance(data, dict):
        return jsonify({'error': 'Puzzle must be a JSON object'}), 400

    user = current_identity()
    created_by = {
        'uid': user['uid'],
        'displayName': data.get('author') or user.get('email') or 'Anonymous',
        'email': user.get('email', ''),
    }

    try:
        storage_info = current_app.config['PUZZLE_STORE'].save_puzzle(data, created_by=created_by)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500

    return jsonify({'success': True, 'storage': storage_info}), 201


@board_bp.route('/puzzles/<puzzle_id>', methods=['GET'])
def get_puzzle(puzzle_id):
    """
    Get a normalized puzzle and its board layout.

    Pass ?seed=N to reproduce a stored layout; otherwise a fresh seed is
    chosen and returned so the client can keep it in its run.
    """
    puzzle = load_puzzle(puzzle_id)
    if puzzle is None:
        return _unavailable()

    seed = request.args.get('seed', type=int)
    if seed is None:
        seed = new_seed()

    return jsonify({
        'puzzle': puzzle,
        'seed': seed,
        'layout': layout(puzzle, seed),
    })


@board_bp.route('/puzzles/<puzzle_id>', methods=['DELETE'])
@require_admin
def delete_puzzle(puzzle_id):
    """Delete a stored puzzle."""
    if current_app.config['PUZZLE_STORE'].delete_puzzle(puzzle_id):
        return jsonify({'success': True})
    return _unavailable()


@board_bp.route('/runs/<puzzle_id>', methods=['GET'])
@require_session_id
def get_run(puzzle_id):
    """Load the run to resume (cloud first for signed-in users)."""
    return jsonify({'snapshot': _coordinator().load(puzzle_id)})


@board_bp.route('/runs/<puzzle_id>', methods=['PUT'])
@require_session_id
def save_run(puzzle_id):
    """Save a run snapshot: {ts?, run: {...}}."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get('run'), dict):
        return jsonify({'error': 'No run provided'}), 400

    ts = data.get('ts')
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        ts = now_ms()

    snapshot = {'ts': ts, 'run': data['run']}
    _coordinator().save(puzzle_id, snapshot)
    return jsonify({'success': True, 'snapshot': snapshot})


@board_bp.route('/runs/<puzzle_id>', methods=['DELETE'])
@require_session_id
def clear_run(puzzle_id):
    """Soft-clear the run (local reset, remote flagged deleted)."""
    _coordinator().clear(puzzle_id)
    return jsonify({'success': True})


@board_bp.route('/runs/<puzzle_id>/guess', methods=['POST'])
@require_session_id
def guess(puzzle_id):
    """
    Check a selection against the puzzle and record it in the run.

    Body: {selection: [wordId, ...]}; defaults to the run's current selection.
    """
    puzzle = load_puzzle(puzzle_id)
    if puzzle is None:
        return _unavailable()

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Body must be a JSON object'}), 400
    selection = data.get('selection')
    if selection is not None and not isinstance(selection, list):
        return jsonify({'error': 'selection must be a list of word ids'}), 400

    coordinator = _coordinator()
    state = RunState.for_puzzle(puzzle)
    snapshot = coordinator.load(puzzle_id)
    if snapshot and isinstance(snapshot.get('run'), dict):
        state.apply_run(snapshot['run'])

    if state.completed:
        return jsonify({'error': 'Run already completed', 'run': state.to_run()}), 409

    result = state.submit(puzzle, selection)
    coordinator.save(puzzle_id, {'ts': now_ms(), 'run': state.to_run()})

    return jsonify({
        'result': result,
        'groupName': group_name(puzzle, result['groupId']) if result['ok'] else '',
        'phase': state.phase,
        'run': state.to_run(),
    })


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(puzzle_store=None, document_store=None, identity=None, runs_dir=None):
    """
    Build the Flask app. Stores default to Supabase (required in production);
    tests pass their own.
    """
    if puzzle_store is None or document_store is None:
        from puzzle_store_supabase import get_document_store, get_puzzle_store
        puzzle_store = puzzle_store or get_puzzle_store()
        document_store = document_store or get_document_store()
    print(f"Using puzzle store: {type(puzzle_store).__name__}")

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024  # 1MB max body
    app.config['PUZZLE_STORE'] = puzzle_store
    app.config['DOCUMENT_STORE'] = document_store
    app.config['RUNS_DIR'] = runs_dir or os.environ.get('RUNS_DIR', 'runs')
    if identity is not None:
        app.config['IDENTITY_PROVIDER'] = identity

    app.register_blueprint(board_bp)
    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8080))
    print("Starting Connections Server...")
    print(f"Open http://localhost:{port}/status in your browser")
    create_app().run(debug=True, port=port, host='0.0.0.0')
