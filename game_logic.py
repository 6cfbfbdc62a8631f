"""
Game Logic
==========

Board layout and guess checking for Connections puzzles.

    shuffle(items, seed)        - reproducible Fisher-Yates permutation
    evaluate(puzzle, selection) - is the selection one complete, correct group?

Both work on the canonical puzzle dict produced by puzzle_normalizer.normalize().
"""

import time

# Linear congruential generator (Numerical Recipes constants).
# Changing these changes every persisted layout.
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2 ** 32


def new_seed():
    """Fresh, non-reproducible seed (current time in ms)."""
    return int(time.time() * 1000) % LCG_MODULUS


def _lcg(seed):
    """Yield draws in [0, 1) from an LCG seeded with `seed`."""
    state = seed % LCG_MODULUS
    while True:
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        yield state / LCG_MODULUS


def shuffle(items, seed=None):
    """
    Return a shuffled copy of `items`. The input is not modified.

    The same (items, seed) pair always gives the same order, so a resumed
    run can rebuild its board from the persisted seed. With seed=None a
    time-based seed is used; callers that want to resume must pick the seed
    themselves with new_seed() and store it.
    """
    result = list(items)
    if len(result) < 2:
        return result
    if seed is None:
        seed = new_seed()

    draws = _lcg(int(seed))
    for i in range(len(result) - 1, 0, -1):
        j = int(next(draws) * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def evaluate(puzzle, selection):
    """
    Check whether `selection` (a list of word ids) is exactly one group.

    Returns {'ok': True, 'groupId': ...} or {'ok': False}. Never raises:
    unknown ids, duplicates and wrong-sized selections all evaluate to
    {'ok': False}.
    """
    try:
        selection = list(selection or [])
    except TypeError:
        return {'ok': False}

    if len(selection) != puzzle.get('groupSize'):
        return {'ok': False}

    group_of = {}
    members = {}
    for word in puzzle.get('words', []):
        group_of[word['id']] = word['groupId']
        members.setdefault(word['groupId'], set()).add(word['id'])

    try:
        group_ids = {group_of.get(word_id) for word_id in selection}
    except TypeError:
        # Unhashable ids can't be in the puzzle
        return {'ok': False}

    if len(group_ids) != 1 or None in group_ids:
        return {'ok': False}

    group_id = group_ids.pop()
    if len(set(selection)) != len(selection) or set(selection) != members[group_id]:
        return {'ok': False}

    return {'ok': True, 'groupId': group_id}


def group_name(puzzle, group_id):
    """Category title for a group label, or '' if the puzzle has none."""
    labels = []
    for word in puzzle.get('words', []):
        if word['groupId'] not in labels:
            labels.append(word['groupId'])
    if group_id not in labels:
        return ''
    categories = puzzle.get('categories', [])
    index = labels.index(group_id)
    if index >= len(categories):
        return ''
    return categories[index].get('title', '')


def layout(puzzle, seed):
    """Word ids in board order for a given seed."""
    return shuffle([word['id'] for word in puzzle['words']], seed)
