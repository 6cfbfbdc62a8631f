"""
In-memory stand-ins for the Supabase stores, used by the tests.
"""

import copy

from puzzle_store_supabase import deep_merge


class TransientStoreError(Exception):
    pass


class MemoryDocumentStore:
    """Document store with switchable failures and a write log."""

    def __init__(self):
        self.docs = {}
        self.writes = []
        self.fail_reads = False
        self.fail_writes = False

    def get(self, path):
        if self.fail_reads:
            raise TransientStoreError("network unavailable")
        doc = self.docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, path, fields, merge=False):
        if self.fail_writes:
            raise TransientStoreError("permission denied")
        fields = copy.deepcopy(fields)
        self.writes.append((path, fields, merge))
        if merge and path in self.docs:
            self.docs[path] = deep_merge(self.docs[path], fields)
        else:
            self.docs[path] = fields

    def delete(self, path):
        if self.fail_writes:
            raise TransientStoreError("permission denied")
        self.docs.pop(path, None)


class BrokenLocalStore:
    """Local store that fails like a full or private-mode browser storage."""

    def get(self, key):
        raise OSError("storage disabled")

    def set(self, key, value):
        raise OSError("quota exceeded")


class MemoryPuzzleStore:
    def __init__(self, puzzles=None):
        self.puzzles = dict(puzzles or {})
        self.saved = []

    def get_puzzle(self, puzzle_id):
        doc = self.puzzles.get(puzzle_id)
        return copy.deepcopy(doc) if doc is not None else None

    def list_puzzles(self, max_results=60):
        return [{'id': pid, 'title': doc.get('title', 'Untitled')}
                for pid, doc in list(self.puzzles.items())[:max_results]]

    def save_puzzle(self, puzzle_data, created_by=None):
        from puzzle_normalizer import validate_puzzle_doc
        validate_puzzle_doc(puzzle_data)
        puzzle_id = puzzle_data.get('id') or f"p{len(self.puzzles) + 1}"
        self.puzzles[puzzle_id] = dict(puzzle_data)
        self.saved.append((puzzle_id, created_by))
        return {'id': puzzle_id, 'is_published': puzzle_data.get('visibility') == 'public'}

    def delete_puzzle(self, puzzle_id):
        return self.puzzles.pop(puzzle_id, None) is not None


SCENARIO_PUZZLE = {
    'id': 'p1',
    'title': 'Scenario',
    'gridSize': 4,
    'groupSize': 4,
    'categories': [
        {'title': 'Fruit', 'words': ['Apple', 'Banana', 'Pear', 'Grape']},
        {'title': 'Colors', 'words': ['Red', 'Blue', 'Green', 'Yellow']},
        {'title': 'Animals', 'words': ['Dog', 'Cat', 'Horse', 'Cow']},
        {'title': 'Vehicles', 'words': ['Car', 'Bus', 'Train', 'Boat']},
    ],
}
