"""
Run persistence tests: local/remote mirroring, soft clear, packing and
debounced saves.

Usage:
    python3 -m pytest Testcase/test_run_persistence.py
"""

import json
import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from puzzle_normalizer import normalize
from puzzle_store import LocalRunStore
from run_persistence import (
    PersistenceCoordinator,
    RunSession,
    local_key,
    pack_found_ids,
    run_path,
    snapshot_from_remote,
    unpack_found_ids,
    user_path,
)
from run_state import RunState
from store_doubles import BrokenLocalStore, MemoryDocumentStore, SCENARIO_PUZZLE

PUZZLE = normalize(SCENARIO_PUZZLE)

SNAPSHOT = {
    'ts': 1700000000000,
    'run': {
        'title': 'Scenario',
        'author': 'ana',
        'moves': 3,
        'completed': False,
        'selectedIds': ['B1'],
        'foundIds': [['A1', 'A2', 'A3', 'A4']],
        'seed': 42,
    },
}

SIGNED_IN = {'uid': 'user-1', 'email': 'ana@example.com'}


def make_coordinator(tmp_path, user=None, docs=None, **kwargs):
    local = LocalRunStore(tmp_path / 'runs', namespace='device-1')
    docs = docs if docs is not None else MemoryDocumentStore()
    coordinator = PersistenceCoordinator(local, docs, identity=lambda: user, **kwargs)
    return coordinator, local, docs


# ---------------------------------------------------------------------------
# packing
# ---------------------------------------------------------------------------

def test_pack_unpack_round_trip():
    found = [['A1', 'A2', 'A3', 'A4'], ['C1', 'C2', 'C3', 'C4'], []]
    packed = pack_found_ids(found)
    assert packed[0] == {'items': ['A1', 'A2', 'A3', 'A4']}
    assert all(not isinstance(entry, list) for entry in packed)
    assert unpack_found_ids(packed) == found


def test_unpack_accepts_legacy_nested_arrays():
    legacy = [['A1', 'A2', 'A3', 'A4'], ['B1', 'B2', 'B3', 'B4']]
    assert unpack_found_ids(legacy) == legacy


def test_unpack_tolerates_junk():
    assert unpack_found_ids(None) == []
    assert unpack_found_ids('A1') == []
    assert unpack_found_ids([{'items': 'A1'}, 5, {}]) == [[], [], []]
    assert pack_found_ids(None) == []


def test_snapshot_from_remote_defaults():
    snap = snapshot_from_remote({'run': {'foundIds': [{'items': ['D1']}], 'moves': 'x'},
                                 'title': 'Top level', 'ts': 5})
    assert snap['ts'] == 5
    assert snap['run'] == {
        'title': 'Top level',
        'author': '',
        'moves': 0,
        'completed': False,
        'selectedIds': [],
        'foundIds': [['D1']],
        'seed': None,
    }


def test_snapshot_from_remote_without_run():
    snap = snapshot_from_remote({})
    assert isinstance(snap['ts'], int)
    assert snap['run']['foundIds'] == []
    assert snap['run']['completed'] is False


# ---------------------------------------------------------------------------
# anonymous play (local only)
# ---------------------------------------------------------------------------

def test_anonymous_save_then_load_uses_local_only(tmp_path):
    coordinator, local, docs = make_coordinator(tmp_path)
    coordinator.save('p1', SNAPSHOT)

    assert coordinator.load('p1') == SNAPSHOT
    assert json.loads(local.get(local_key('p1'))) == SNAPSHOT
    assert docs.writes == []


def test_load_with_nothing_saved(tmp_path):
    coordinator, _, _ = make_coordinator(tmp_path)
    assert coordinator.load('missing') is None


def test_clear_then_load_gives_fresh_uncompleted_snapshot(tmp_path):
    coordinator, _, _ = make_coordinator(tmp_path)
    coordinator.save('p1', SNAPSHOT)
    coordinator.clear('p1')

    snap = coordinator.load('p1')
    assert snap['run'] == {'completed': False}
    assert snap['ts'] > SNAPSHOT['ts']


def test_non_interactive_context_never_touches_remote(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN, interactive=False)
    docs.docs[run_path('user-1', 'p1')] = {'run': {'moves': 9}, 'ts': 1}
    coordinator.save('p1', SNAPSHOT)

    assert coordinator.load('p1') == SNAPSHOT
    assert docs.writes == []


def test_user_without_uid_is_anonymous(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user={'email': 'x@example.com'})
    coordinator.save('p1', SNAPSHOT)
    assert docs.writes == []


def test_identity_failure_means_anonymous(tmp_path):
    def broken_identity():
        raise RuntimeError("token expired")

    local = LocalRunStore(tmp_path / 'runs')
    docs = MemoryDocumentStore()
    coordinator = PersistenceCoordinator(local, docs, identity=broken_identity)
    coordinator.save('p1', SNAPSHOT)
    assert coordinator.load('p1') == SNAPSHOT
    assert docs.writes == []


def test_local_failures_are_absorbed():
    coordinator = PersistenceCoordinator(BrokenLocalStore(), MemoryDocumentStore())
    coordinator.save('p1', SNAPSHOT)
    coordinator.clear('p1')
    assert coordinator.load('p1') is None


def test_puzzle_ids_that_look_alike_keep_separate_runs(tmp_path):
    coordinator, _, _ = make_coordinator(tmp_path)
    coordinator.save('a.b', {'ts': 1, 'run': {'moves': 5}})
    coordinator.save('a:b', {'ts': 2, 'run': {'moves': 7}})

    assert coordinator.load('a_b') is None
    assert coordinator.load('a.b') == {'ts': 1, 'run': {'moves': 5}}
    assert coordinator.load('a:b') == {'ts': 2, 'run': {'moves': 7}}


def test_corrupt_local_value_loads_as_nothing(tmp_path):
    coordinator, local, _ = make_coordinator(tmp_path)
    local.set(local_key('p1'), '{not json')
    assert coordinator.load('p1') is None


# ---------------------------------------------------------------------------
# signed-in play (local + remote)
# ---------------------------------------------------------------------------

def test_signed_in_save_writes_packed_run_and_user_meta(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator.save('p1', SNAPSHOT)

    record = docs.docs[run_path('user-1', 'p1')]
    assert record['run']['foundIds'] == [{'items': ['A1', 'A2', 'A3', 'A4']}]
    assert record['run']['seed'] == 42
    assert record['ts'] == SNAPSHOT['ts']
    assert record['title'] == 'Scenario'
    assert record['author'] == 'ana'
    assert record['completed'] is False
    assert record['deleted'] is False
    assert 'updatedAt' in record

    meta = docs.docs[user_path('user-1')]
    assert meta['lastActive'] == 'p1'
    assert all(merge for _, _, merge in docs.writes)


def test_save_drops_missing_seed_from_remote(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    snap = {'ts': 1, 'run': dict(SNAPSHOT['run'], seed=None)}
    coordinator.save('p1', snap)
    assert 'seed' not in docs.docs[run_path('user-1', 'p1')]['run']


def test_save_does_not_mutate_snapshot(tmp_path):
    coordinator, _, _ = make_coordinator(tmp_path, user=SIGNED_IN)
    snap = json.loads(json.dumps(SNAPSHOT))
    coordinator.save('p1', snap)
    assert snap == SNAPSHOT


def test_signed_in_round_trip(tmp_path):
    coordinator, _, _ = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator.save('p1', SNAPSHOT)
    assert coordinator.load('p1') == SNAPSHOT


def test_remote_write_failure_is_swallowed(tmp_path, capsys):
    coordinator, local, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    docs.fail_writes = True
    coordinator.save('p1', SNAPSHOT)

    assert json.loads(local.get(local_key('p1'))) == SNAPSHOT
    assert '[persist:save]' in capsys.readouterr().out


def test_remote_read_failure_falls_back_to_local(tmp_path, capsys):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator.save('p1', SNAPSHOT)
    docs.fail_reads = True

    assert coordinator.load('p1') == SNAPSHOT
    assert '[persist:load]' in capsys.readouterr().out


def test_missing_remote_document_falls_back_to_local(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path)
    coordinator.save('p1', SNAPSHOT)

    signed_in = PersistenceCoordinator(coordinator.local_store, docs, identity=lambda: SIGNED_IN)
    assert signed_in.load('p1') == SNAPSHOT


def test_cloud_wins_and_is_mirrored_locally(tmp_path):
    coordinator, local, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator._local_save('p1', SNAPSHOT)
    docs.docs[run_path('user-1', 'p1')] = {
        'run': {'moves': 7, 'completed': True, 'foundIds': [{'items': ['C1', 'C2', 'C3', 'C4']}]},
        'ts': 1800000000000,
        'title': 'From cloud',
    }

    snap = coordinator.load('p1')
    assert snap['ts'] == 1800000000000
    assert snap['run']['moves'] == 7
    assert snap['run']['completed'] is True
    assert snap['run']['title'] == 'From cloud'
    assert snap['run']['foundIds'] == [['C1', 'C2', 'C3', 'C4']]
    assert json.loads(local.get(local_key('p1'))) == snap


def test_legacy_remote_found_ids_load(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    docs.docs[run_path('user-1', 'p1')] = {'run': {'foundIds': [['A1', 'A2', 'A3', 'A4']]}, 'ts': 3}
    assert coordinator.load('p1')['run']['foundIds'] == [['A1', 'A2', 'A3', 'A4']]


def test_signed_in_clear_flags_remote_deleted(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator.save('p1', SNAPSHOT)
    coordinator.clear('p1')

    record = docs.docs[run_path('user-1', 'p1')]
    assert record['deleted'] is True
    assert record['ts'] > SNAPSHOT['ts']
    # soft clear keeps the old run on the record
    assert record['run']['moves'] == 3

    snap = coordinator.load('p1')
    assert snap['run'] == {'completed': False}
    assert snap['ts'] == record['ts']


def test_save_after_clear_revives_remote_record(tmp_path):
    coordinator, _, docs = make_coordinator(tmp_path, user=SIGNED_IN)
    coordinator.clear('p1')
    coordinator.save('p1', SNAPSHOT)
    assert docs.docs[run_path('user-1', 'p1')]['deleted'] is False
    assert coordinator.load('p1') == SNAPSHOT


def test_remote_clear_failure_still_clears_locally(tmp_path, capsys):
    coordinator, _, docs = make_coordinator(tmp_path)
    coordinator.save('p1', SNAPSHOT)
    signed_in = PersistenceCoordinator(coordinator.local_store, docs, identity=lambda: SIGNED_IN)
    docs.fail_writes = True
    docs.fail_reads = True

    signed_in.clear('p1')
    assert '[persist:clear]' in capsys.readouterr().out
    assert signed_in.load('p1')['run'] == {'completed': False}


# ---------------------------------------------------------------------------
# RunSession
# ---------------------------------------------------------------------------

class RecordingCoordinator:
    def __init__(self, snapshots=None):
        self.saved = []
        self.snapshots = list(snapshots or [])
        self.saved_event = threading.Event()

    def save(self, puzzle_id, snapshot):
        self.saved.append((puzzle_id, snapshot))
        self.saved_event.set()

    def load(self, puzzle_id):
        return self.snapshots.pop(0) if self.snapshots else None


def make_session(coordinator, **kwargs):
    state = RunState.for_puzzle(PUZZLE, seed=8)
    session = RunSession(coordinator, 'p1', lambda: state, state.apply_run, **kwargs)
    return session, state


def test_burst_of_changes_is_one_write():
    coordinator = RecordingCoordinator()
    session, state = make_session(coordinator, delay=60)

    for word_id in ['A1', 'A2', 'A3']:
        state.select(word_id)
        session.persist_debounced()
    assert session.pending
    assert coordinator.saved == []

    session.flush()
    assert not session.pending
    assert len(coordinator.saved) == 1
    assert coordinator.saved[0][1]['run']['selectedIds'] == ['A1', 'A2', 'A3']


def test_debounced_save_fires_after_delay():
    coordinator = RecordingCoordinator()
    session, state = make_session(coordinator, delay=0.01)
    state.select('B2')
    session.persist_debounced()

    assert coordinator.saved_event.wait(5)
    assert coordinator.saved[-1][1]['run']['selectedIds'] == ['B2']


def test_cancel_drops_pending_save():
    coordinator = RecordingCoordinator()
    session, _ = make_session(coordinator, delay=60)
    session.persist_debounced()
    session.cancel()
    session.flush()
    assert coordinator.saved == []


def test_persist_now_writes_immediately():
    coordinator = RecordingCoordinator()
    session, state = make_session(coordinator, delay=60)
    session.persist_debounced()
    state.submit(PUZZLE, ['A1', 'A2', 'A3', 'A4'])
    session.persist_now()

    assert not session.pending
    assert len(coordinator.saved) == 1
    run = coordinator.saved[0][1]['run']
    assert run['moves'] == 1
    assert run['seed'] == 8


def test_session_load_applies_run():
    coordinator = RecordingCoordinator([SNAPSHOT])
    session, state = make_session(coordinator)
    assert session.load() == SNAPSHOT
    assert state.moves == 3
    assert state.found_ids == [['A1', 'A2', 'A3', 'A4']]
    assert state.seed == 42


def test_session_load_of_cleared_snapshot_resets_progress():
    coordinator = RecordingCoordinator([{'ts': 1, 'run': {'completed': False}}])
    session, state = make_session(coordinator)
    state.submit(PUZZLE, ['A1', 'A2', 'A3', 'A4'])
    session.load()
    assert state.found_ids == []
    assert state.moves == 0
    assert state.seed == 8


class NestedLoadCoordinator(RecordingCoordinator):
    """The first load starts a second load before it returns."""

    def __init__(self, first, second):
        super().__init__()
        self.first = first
        self.second = second
        self.session = None
        self.calls = 0

    def load(self, puzzle_id):
        self.calls += 1
        if self.calls == 1:
            self.session.load()
            return self.first
        return self.second


def test_overlapping_loads_apply_last_resolved_by_default():
    first = {'ts': 1, 'run': {'moves': 1}}
    second = {'ts': 2, 'run': {'moves': 2}}
    coordinator = NestedLoadCoordinator(first, second)
    session, state = make_session(coordinator)
    coordinator.session = session

    assert session.load() == first
    assert state.moves == 1


def test_stale_guard_drops_superseded_load():
    first = {'ts': 1, 'run': {'moves': 1}}
    second = {'ts': 2, 'run': {'moves': 2}}
    coordinator = NestedLoadCoordinator(first, second)
    session, state = make_session(coordinator, stale_guard=True)
    coordinator.session = session

    assert session.load() is None
    assert state.moves == 2


def test_save_delay_from_environment(monkeypatch, capsys):
    monkeypatch.setenv('SAVE_DEBOUNCE_SECONDS', '1.5')
    session, _ = make_session(RecordingCoordinator())
    assert session.delay == 1.5

    monkeypatch.setenv('SAVE_DEBOUNCE_SECONDS', 'soon')
    session, _ = make_session(RecordingCoordinator())
    assert session.delay == 0.25
    assert '[WARNING] SAVE_DEBOUNCE_SECONDS' in capsys.readouterr().out


def test_remote_completed_flag_must_be_a_real_bool():
    assert snapshot_from_remote({'run': {'completed': 'false'}})['run']['completed'] is False
    assert snapshot_from_remote({'run': {'completed': True}})['run']['completed'] is True
