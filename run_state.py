"""
Run State
=========

One player's session on one puzzle: current selection, solved groups
(in solve order), move count, completion and the layout seed.

    fresh        - nothing guessed yet
    in_progress  - at least one guess made, groups still missing
    completed    - every group found (still loadable for replay)

RunState never evaluates or persists on its own; game_logic.evaluate()
decides correctness and run_persistence stores the snapshot.
"""

from game_logic import evaluate

FRESH = "fresh"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"


def _int_or(value, default):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _id_list(value):
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if isinstance(v, (str, int)) and not isinstance(v, bool)]


class RunState:
    def __init__(self, group_size=4, grid_count=4, title='', author='', seed=None):
        self.group_size = group_size
        self.grid_count = grid_count
        self.title = title
        self.author = author
        self.seed = seed
        self.moves = 0
        self.completed = False
        self.selected_ids = []
        self.found_ids = []

    @classmethod
    def for_puzzle(cls, puzzle, author='', seed=None):
        return cls(group_size=puzzle['groupSize'], grid_count=puzzle['gridCount'],
                   title=puzzle.get('title', ''), author=author, seed=seed)

    @property
    def phase(self):
        if self.completed:
            return COMPLETED
        if self.moves or self.found_ids:
            return IN_PROGRESS
        return FRESH

    def is_found(self, word_id):
        return any(word_id in group for group in self.found_ids)

    # --- selection ---

    def select(self, word_id):
        """Highlight a word. Returns False if nothing changed."""
        if self.completed or word_id in self.selected_ids or self.is_found(word_id):
            return False
        if len(self.selected_ids) >= self.group_size:
            return False
        self.selected_ids.append(word_id)
        return True

    def deselect(self, word_id):
        if word_id not in self.selected_ids:
            return False
        self.selected_ids.remove(word_id)
        return True

    def clear_selection(self):
        self.selected_ids = []

    # --- guesses ---

    def record_guess(self, ids, correct):
        """
        Count a guess. A correct guess is appended to found_ids and the
        run completes once every group is found. A completed run ignores
        further guesses; returns False in that case.
        """
        if self.completed:
            return False
        self.moves += 1
        if correct:
            group = list(ids)
            self.found_ids.append(group)
            self.selected_ids = [i for i in self.selected_ids if i not in group]
            if len(self.found_ids) >= self.grid_count:
                self.completed = True
                self.selected_ids = []
        return True

    def submit(self, puzzle, selection=None):
        """Evaluate the selection (default: the current one) and record the outcome."""
        if self.completed:
            return {'ok': False}
        ids = list(self.selected_ids if selection is None else selection)
        result = evaluate(puzzle, ids)
        if result['ok'] and any(set(ids) == set(g) for g in self.found_ids):
            # Already solved: not a new group
            result = {'ok': False}
        self.record_guess(ids, result['ok'])
        return result

    def reset(self):
        """Back to fresh. Title and author survive."""
        self.moves = 0
        self.completed = False
        self.selected_ids = []
        self.found_ids = []

    # --- snapshot conversion ---

    def to_run(self):
        run = {
            'title': self.title or '',
            'author': self.author or '',
            'moves': self.moves,
            'completed': bool(self.completed),
            'selectedIds': list(self.selected_ids),
            'foundIds': [list(g) for g in self.found_ids],
        }
        if isinstance(self.seed, int):
            run['seed'] = self.seed
        return run

    def apply_run(self, run):
        """Load a snapshot's run dict, substituting defaults for missing or bad fields."""
        run = run if isinstance(run, dict) else {}
        self.title = run.get('title') if isinstance(run.get('title'), str) else self.title
        self.author = run.get('author') if isinstance(run.get('author'), str) else self.author
        self.moves = max(0, _int_or(run.get('moves'), 0))
        self.completed = run.get('completed') is True
        self.selected_ids = _id_list(run.get('selectedIds'))[:self.group_size]
        found = run.get('foundIds')
        self.found_ids = [_id_list(g) for g in found] if isinstance(found, list) else []
        seed = run.get('seed')
        if isinstance(seed, int) and not isinstance(seed, bool):
            self.seed = seed

    @classmethod
    def from_run(cls, run, group_size=4, grid_count=4):
        state = cls(group_size=group_size, grid_count=grid_count)
        state.apply_run(run)
        return state
