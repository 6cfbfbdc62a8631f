"""
Run Persistence
===============

Keeps a player's run in two places:

    local  - this device only, always available, best-effort
    remote - per signed-in user, shared across devices

Rules:
    save   - local always; remote only for a signed-in user. Remote
             failures are printed and swallowed, play never blocks on them.
    load   - signed-in: remote first (cloud wins, mirrored to local), local
             on any remote failure. Anonymous / non-interactive: local only.
    clear  - soft clear: local gets {completed: False}, remote gets
             {deleted: True}; nothing is physically deleted.

Remote paths:
    users/<uid>                 - {lastActive, lastActiveUpdatedAt}
    users/<uid>/runs/<puzzleId> - {run, ts, title, author, completed, deleted, updatedAt}

The remote store can't hold arrays of arrays, so foundIds is packed as
[{'items': [...]}, ...] on write and unpacked on read.
"""

import json
import threading
import time
from datetime import datetime, timezone

from game_constants import LOCAL_KEY_PREFIX, save_delay


def now_ms():
    return int(time.time() * 1000)


def _server_time():
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Nested array packing
# ---------------------------------------------------------------------------

def pack_found_ids(found):
    """[[ids], ...] -> [{'items': [ids]}, ...]"""
    if not isinstance(found, list):
        return []
    return [{'items': list(group) if isinstance(group, list) else []} for group in found]


def unpack_found_ids(raw):
    """Inverse of pack_found_ids. Also accepts the legacy unpacked [[ids], ...]."""
    if not isinstance(raw, list):
        return []
    if raw and isinstance(raw[0], list):
        return [list(group) if isinstance(group, list) else [] for group in raw]
    unpacked = []
    for entry in raw:
        items = entry.get('items') if isinstance(entry, dict) else None
        unpacked.append(list(items) if isinstance(items, list) else [])
    return unpacked


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

def _number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value):
    return list(value) if isinstance(value, list) else []


def cleared_snapshot(ts=None):
    return {'ts': ts if ts is not None else now_ms(), 'run': {'completed': False}}


def snapshot_from_remote(data):
    """
    Build a snapshot from a remote run record. Every field tolerates absence
    or a wrong type and falls back to its default.
    """
    raw_run = data.get('run') if isinstance(data.get('run'), dict) else {}

    title = raw_run.get('title')
    if not isinstance(title, str):
        title = data.get('title') if isinstance(data.get('title'), str) else ''
    author = raw_run.get('author')
    if not isinstance(author, str):
        author = data.get('author') if isinstance(data.get('author'), str) else ''

    seed = raw_run.get('seed')
    return {
        'ts': data['ts'] if _number(data.get('ts')) else now_ms(),
        'run': {
            'title': title,
            'author': author,
            'moves': raw_run['moves'] if _number(raw_run.get('moves')) else 0,
            'completed': raw_run.get('completed') is True,
            'selectedIds': _string_list(raw_run.get('selectedIds')),
            'foundIds': unpack_found_ids(raw_run.get('foundIds')),
            'seed': seed if _number(seed) else None,
        },
    }


def local_key(puzzle_id):
    return f"{LOCAL_KEY_PREFIX}{puzzle_id}"


def user_path(uid):
    return f"users/{uid}"


def run_path(uid, puzzle_id):
    return f"users/{uid}/runs/{puzzle_id}"


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class PersistenceCoordinator:
    """
    Mirrors run snapshots between a local store and a remote document store.

    Args:
        local_store: object with get(key) -> str | None and set(key, str)
        document_store: object with get(path), set(path, fields, merge=...),
            delete(path); may be None (cloud sync disabled)
        identity: callable returning {'uid': ...} or None, asked on every call
        interactive: False for contexts that must never touch the cloud
    """

    def __init__(self, local_store, document_store=None, identity=None, interactive=True):
        self.local_store = local_store
        self.document_store = document_store
        self.identity = identity or (lambda: None)
        self.interactive = interactive

    # --- local ---

    def _local_save(self, puzzle_id, snapshot):
        try:
            self.local_store.set(local_key(puzzle_id), json.dumps(snapshot))
        except Exception:
            # Quota / permission problems only cost us the local cache
            pass

    def _local_load(self, puzzle_id):
        try:
            raw = self.local_store.get(local_key(puzzle_id))
            return json.loads(raw) if raw else None
        except Exception:
            return None

    # --- identity ---

    def _current_user(self):
        """Signed-in user with a uid, or None (cloud sync off)."""
        if not self.interactive or self.document_store is None:
            return None
        try:
            user = self.identity()
        except Exception:
            return None
        if not user or not user.get('uid'):
            return None
        return user

    # --- operations ---

    def save(self, puzzle_id, snapshot):
        """Write locally, then to the cloud for signed-in users. Never raises."""
        self._local_save(puzzle_id, snapshot)

        user = self._current_user()
        if user is None:
            return

        run = dict(snapshot.get('run') or {})
        run['foundIds'] = pack_found_ids(run.get('foundIds'))
        if run.get('seed') is None:
            run.pop('seed', None)

        payload = {
            'run': run,
            'ts': snapshot.get('ts') or now_ms(),
            'title': run.get('title') or '',
            'author': run.get('author') or '',
            'completed': bool(run.get('completed')),
            'deleted': False,
            'updatedAt': _server_time(),
        }
        user_meta = {
            'lastActive': puzzle_id,
            'lastActiveUpdatedAt': _server_time(),
        }

        try:
            self.document_store.set(run_path(user['uid'], puzzle_id), payload, merge=True)
            self.document_store.set(user_path(user['uid']), user_meta, merge=True)
        except Exception as e:
            print(f"[persist:save] Remote write failed for {puzzle_id}: {e}")

    def load(self, puzzle_id):
        """Return the snapshot to resume from, or None."""
        user = self._current_user()
        if user is not None:
            try:
                data = self.document_store.get(run_path(user['uid'], puzzle_id))
                if data is not None:
                    if data.get('deleted'):
                        cloud = cleared_snapshot(data['ts'] if _number(data.get('ts')) else None)
                    else:
                        cloud = snapshot_from_remote(data)
                    self._local_save(puzzle_id, cloud)
                    return cloud
            except Exception as e:
                print(f"[persist:load] Remote read failed for {puzzle_id}: {e}")

        return self._local_load(puzzle_id)

    def clear(self, puzzle_id):
        """Soft-clear the run locally and flag the remote record deleted."""
        self._local_save(puzzle_id, cleared_snapshot())

        user = self._current_user()
        if user is None:
            return
        try:
            self.document_store.set(
                run_path(user['uid'], puzzle_id),
                {'deleted': True, 'ts': now_ms(), 'updatedAt': _server_time()},
                merge=True,
            )
        except Exception as e:
            print(f"[persist:clear] Remote write failed for {puzzle_id}: {e}")


# ---------------------------------------------------------------------------
# Session binding with debounced saves
# ---------------------------------------------------------------------------

class RunSession:
    """
    Binds a coordinator to one puzzle and a live run.

    get_state() returns the current RunState; apply_state(run_dict) loads a
    snapshot's run into it. Rapid changes should go through
    persist_debounced(): only the last state of a burst gets written.
    """

    def __init__(self, coordinator, puzzle_id, get_state, apply_state,
                 delay=None, stale_guard=False):
        self.coordinator = coordinator
        self.puzzle_id = puzzle_id
        self.get_state = get_state
        self.apply_state = apply_state
        self.delay = save_delay() if delay is None else delay
        self.stale_guard = stale_guard
        self._timer = None
        self._lock = threading.Lock()
        self._generation = 0

    def snapshot(self):
        return {'ts': now_ms(), 'run': self.get_state().to_run()}

    def persist_now(self):
        self.cancel()
        self.coordinator.save(self.puzzle_id, self.snapshot())

    def persist_debounced(self, delay=None):
        """(Re)start the trailing-edge timer; the save runs once things go quiet."""
        delay = self.delay if delay is None else delay
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self):
        with self._lock:
            self._timer = None
        self.coordinator.save(self.puzzle_id, self.snapshot())

    @property
    def pending(self):
        return self._timer is not None

    def flush(self):
        """Write a pending debounced save immediately."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self.coordinator.save(self.puzzle_id, self.snapshot())

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def load(self):
        """
        Load the stored snapshot into the live run. Returns the snapshot or None.

        With stale_guard, a result is dropped if another load() started
        after this one.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation

        snap = self.coordinator.load(self.puzzle_id)
        if self.stale_guard and generation != self._generation:
            return None
        if snap and isinstance(snap.get('run'), dict):
            self.apply_state(snap['run'])
        return snap
