#!/usr/bin/env python3
"""
Puzzle Normalizer
=================

Stored puzzles come in three historical shapes:

    CategoriesForm   - categories[{title, words[]}] (+ parallel wordsFlat[])
    FlatWordsForm    - wordsFlat[] of strings, or words[] of {id, text, groupId}
    LegacyTupleForm  - words[][] as a fixed 4x4 grid (+ solution.groups for names)

normalize() turns any of them into the canonical puzzle used by game_logic
and the HTTP layer:

    {
        'id', 'title', 'description',
        'groupSize', 'gridCount',
        'words': [{'id', 'text', 'groupId'}, ...],
        'categories': [{'title', 'words'}, ...],
    }

Structure is validated strictly (NormalizationError). Leaf values are
coerced: a word with missing or non-string text becomes ''.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from game_constants import (
    DEFAULT_GRID_SIZE,
    DEFAULT_GROUP_SIZE,
    DIFFICULTIES,
    MAX_GRID_SIZE,
    MIN_GRID_SIZE,
    VISIBILITIES,
    group_label,
)

MISSING_DATA = "missing-data"
INVALID_SHAPE = "invalid-shape"


class NormalizationError(ValueError):
    """Raised when a stored puzzle can't be turned into a playable board."""

    def __init__(self, code, rule=None):
        self.code = code
        self.rule = rule
        super().__init__(f"{code}: {rule}" if rule else code)


# ---------------------------------------------------------------------------
# Input forms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoriesForm:
    categories: List[Dict[str, Any]]
    words_flat: Optional[List[Any]]
    grid_size: Optional[int]
    group_size: Optional[int]


@dataclass(frozen=True)
class FlatWordsForm:
    entries: List[Any]
    titles: Dict[str, str]
    grid_size: Optional[int]
    group_size: Optional[int]


@dataclass(frozen=True)
class LegacyTupleForm:
    rows: List[List[Any]]
    titles: List[str]


# ---------------------------------------------------------------------------
# Lenient leaf helpers
# ---------------------------------------------------------------------------

def to_array_like(value):
    """Read lists, tuples and index-keyed objects as a list. Anything else is []."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, Mapping):
        keys = list(value.keys())
        if keys and all(str(k).isdigit() for k in keys):
            keys.sort(key=lambda k: int(k))
        return [value[k] for k in keys]
    return []


def coerce_text(word):
    """Word text as a string; '' for anything that isn't text-like."""
    if isinstance(word, str):
        return word
    if isinstance(word, bool) or word is None:
        return ''
    if isinstance(word, (int, float)):
        return str(word)
    if isinstance(word, Mapping):
        for key in ('text', 'word', 'value'):
            if isinstance(word.get(key), str):
                return word[key]
    return ''


def _coerce_title(item):
    if not isinstance(item, Mapping):
        return ''
    for key in ('title', 'name'):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ''


def _declared_size(raw, *keys):
    """Read a declared size field; None if absent, NormalizationError if not an integer."""
    for key in keys:
        if key not in raw or raw[key] is None:
            continue
        value = raw[key]
        if isinstance(value, bool):
            raise NormalizationError(INVALID_SHAPE, f"{key} must be an integer")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not isinstance(value, int):
            raise NormalizationError(INVALID_SHAPE, f"{key} must be an integer")
        return value
    return None


def _check_bounds(grid_size, group_size):
    if not MIN_GRID_SIZE <= grid_size <= MAX_GRID_SIZE:
        raise NormalizationError(
            INVALID_SHAPE, f"gridSize out of range ({MIN_GRID_SIZE}..{MAX_GRID_SIZE})")
    if not MIN_GRID_SIZE <= group_size <= MAX_GRID_SIZE:
        raise NormalizationError(
            INVALID_SHAPE, f"groupSize out of range ({MIN_GRID_SIZE}..{MAX_GRID_SIZE})")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(raw):
    """Decide which stored shape `raw` is. Raises NormalizationError('missing-data')."""
    if not isinstance(raw, Mapping):
        raise NormalizationError(MISSING_DATA, "puzzle document is not an object")

    grid_size = _declared_size(raw, 'gridSize', 'gridCount')
    group_size = _declared_size(raw, 'groupSize')

    categories = to_array_like(raw.get('categories'))
    if categories:
        words_flat = raw.get('wordsFlat')
        return CategoriesForm(
            categories=categories,
            words_flat=None if words_flat is None else to_array_like(words_flat),
            grid_size=grid_size,
            group_size=group_size,
        )

    titles = {}
    for i, group in enumerate(to_array_like(raw.get('groups'))):
        if isinstance(group, Mapping):
            titles[str(group.get('id', group_label(i)))] = _coerce_title(group)

    words_flat = to_array_like(raw.get('wordsFlat'))
    if words_flat:
        return FlatWordsForm(entries=words_flat, titles=titles,
                             grid_size=grid_size, group_size=group_size)

    words = to_array_like(raw.get('words'))
    if words:
        first = words[0]
        if isinstance(first, (list, tuple)) or (
                isinstance(first, Mapping) and not _looks_like_word(first)):
            rows = [to_array_like(row) for row in words]
            solution = raw.get('solution') if isinstance(raw.get('solution'), Mapping) else {}
            names = [_coerce_title(g) for g in to_array_like(solution.get('groups'))]
            return LegacyTupleForm(rows=rows, titles=names)
        return FlatWordsForm(entries=words, titles=titles,
                             grid_size=grid_size, group_size=group_size)

    raise NormalizationError(MISSING_DATA, "no categories, wordsFlat or words")


def _looks_like_word(item):
    return any(key in item for key in ('id', 'text', 'word', 'groupId', 'value'))


# ---------------------------------------------------------------------------
# Per-form builders: each returns (words, categories, grid_size, group_size)
# ---------------------------------------------------------------------------

def _from_categories(form):
    grid_size = form.grid_size if form.grid_size is not None else len(form.categories)

    for i, category in enumerate(form.categories):
        if not isinstance(category, Mapping):
            raise NormalizationError(INVALID_SHAPE, f"categories[{i}] must be an object")
    word_lists = [to_array_like(c.get('words')) for c in form.categories]

    group_size = form.group_size if form.group_size is not None else len(word_lists[0])
    _check_bounds(grid_size, group_size)

    if len(form.categories) != grid_size:
        raise NormalizationError(INVALID_SHAPE, "categories.length must equal gridSize")
    for i, words in enumerate(word_lists):
        if len(words) != group_size:
            raise NormalizationError(
                INVALID_SHAPE, f"categories[{i}].words must have {group_size} items")
    if form.words_flat is not None and len(form.words_flat) != grid_size * group_size:
        raise NormalizationError(
            INVALID_SHAPE, "wordsFlat length must equal gridSize * groupSize")

    words = []
    categories = []
    for gi, (category, raw_words) in enumerate(zip(form.categories, word_lists)):
        gid = group_label(gi)
        texts = [coerce_text(w) for w in raw_words]
        for wi, text in enumerate(texts):
            words.append({'id': f"{gid}{wi + 1}", 'text': text, 'groupId': gid})
        categories.append({'title': _coerce_title(category), 'words': texts})
    return words, categories, grid_size, group_size


def _from_flat(form):
    if all(isinstance(e, Mapping) for e in form.entries):
        return _from_word_objects(form)

    total = len(form.entries)
    group_size = form.group_size if form.group_size is not None else DEFAULT_GROUP_SIZE
    grid_size = form.grid_size
    if grid_size is None:
        grid_size = total // group_size if group_size and total % group_size == 0 else DEFAULT_GRID_SIZE
    _check_bounds(grid_size, group_size)

    if total != grid_size * group_size:
        raise NormalizationError(
            INVALID_SHAPE, "wordsFlat length must equal gridSize * groupSize")

    words = []
    categories = []
    for gi in range(grid_size):
        gid = group_label(gi)
        run = [coerce_text(w) for w in form.entries[gi * group_size:(gi + 1) * group_size]]
        for wi, text in enumerate(run):
            words.append({'id': f"{gid}{wi + 1}", 'text': text, 'groupId': gid})
        categories.append({'title': form.titles.get(gid, ''), 'words': run})
    return words, categories, grid_size, group_size


def _from_word_objects(form):
    position_size = form.group_size if form.group_size is not None else DEFAULT_GROUP_SIZE
    if position_size < 1:
        raise NormalizationError(INVALID_SHAPE, "groupSize must be positive")

    words = []
    seen_ids = set()
    order = []
    texts_by_group = {}
    for i, entry in enumerate(form.entries):
        word_id = entry.get('id', entry.get('key', i))
        word_id = str(word_id)
        if word_id in seen_ids:
            raise NormalizationError(INVALID_SHAPE, f"duplicate word id '{word_id}'")
        seen_ids.add(word_id)

        gid = entry.get('groupId')
        if gid is None or gid == '':
            if i // position_size >= MAX_GRID_SIZE:
                raise NormalizationError(
                    INVALID_SHAPE, f"gridSize out of range ({MIN_GRID_SIZE}..{MAX_GRID_SIZE})")
            gid = group_label(i // position_size)
        gid = str(gid)
        if gid not in texts_by_group:
            order.append(gid)
            texts_by_group[gid] = []

        text = coerce_text(entry).strip()
        texts_by_group[gid].append(text)
        words.append({'id': word_id, 'text': text, 'groupId': gid})

    sizes = {len(texts_by_group[g]) for g in order}
    if len(sizes) != 1:
        raise NormalizationError(INVALID_SHAPE, "every group must have the same number of words")
    group_size = sizes.pop()
    grid_size = len(order)

    if form.group_size is not None and form.group_size != group_size:
        raise NormalizationError(INVALID_SHAPE, f"groups must have {form.group_size} words")
    if form.grid_size is not None and form.grid_size != grid_size:
        raise NormalizationError(INVALID_SHAPE, "group count must equal gridSize")
    _check_bounds(grid_size, group_size)

    categories = [{'title': form.titles.get(g, ''), 'words': texts_by_group[g]} for g in order]
    return words, categories, grid_size, group_size


def _from_legacy(form):
    if len(form.rows) != DEFAULT_GRID_SIZE or any(len(r) != DEFAULT_GROUP_SIZE for r in form.rows):
        raise NormalizationError(INVALID_SHAPE, "legacy words grid must be 4x4")

    words = []
    categories = []
    for gi, row in enumerate(form.rows):
        gid = group_label(gi)
        texts = [coerce_text(w) for w in row]
        for wi, text in enumerate(texts):
            words.append({'id': f"{gid}{wi + 1}", 'text': text, 'groupId': gid})
        title = form.titles[gi] if gi < len(form.titles) else ''
        categories.append({'title': title, 'words': texts})
    return words, categories, DEFAULT_GRID_SIZE, DEFAULT_GROUP_SIZE


_BUILDERS = {
    CategoriesForm: _from_categories,
    FlatWordsForm: _from_flat,
    LegacyTupleForm: _from_legacy,
}


def normalize(raw, puzzle_id=None):
    """
    Build the canonical puzzle from a stored document.

    Args:
        raw: puzzle document as read from the store (any historical shape)
        puzzle_id: document id; falls back to raw['id']

    Raises:
        NormalizationError: 'missing-data' when there is no word source,
            'invalid-shape' (with .rule) when the structure is inconsistent
    """
    form = classify(raw)
    words, categories, grid_size, group_size = _BUILDERS[type(form)](form)

    if puzzle_id is None:
        puzzle_id = raw.get('id', '')
    title = raw.get('title')
    description = raw.get('description')

    return {
        'id': str(puzzle_id),
        'title': title.strip() if isinstance(title, str) and title.strip() else 'Untitled',
        'description': description if isinstance(description, str) else '',
        'groupSize': group_size,
        'gridCount': grid_size,
        'words': words,
        'categories': categories,
    }


# ---------------------------------------------------------------------------
# Write-side validation
# ---------------------------------------------------------------------------

def _is_size(value):
    return isinstance(value, int) and not isinstance(value, bool) and \
        MIN_GRID_SIZE <= value <= MAX_GRID_SIZE


def validate_puzzle_doc(doc):
    """
    Check a puzzle document before it is written. Raises ValueError naming
    the first broken rule.
    """
    if not isinstance(doc, Mapping):
        raise ValueError("puzzle must be an object")

    grid_size = doc.get('gridSize')
    group_size = doc.get('groupSize')
    if not _is_size(grid_size):
        raise ValueError(f"gridSize out of range ({MIN_GRID_SIZE}..{MAX_GRID_SIZE})")
    if not _is_size(group_size):
        raise ValueError(f"groupSize out of range ({MIN_GRID_SIZE}..{MAX_GRID_SIZE})")

    categories = doc.get('categories')
    if not isinstance(categories, list) or len(categories) != grid_size:
        raise ValueError("categories.length must equal gridSize")
    for i, category in enumerate(categories):
        title = category.get('title') if isinstance(category, Mapping) else None
        if not isinstance(title, str) or not title.strip():
            raise ValueError(f"categories[{i}].title required")
        words = category.get('words')
        if not isinstance(words, list) or len(words) != group_size:
            raise ValueError(f"categories[{i}].words must have {group_size} items")

    words_flat = doc.get('wordsFlat')
    if not isinstance(words_flat, list) or len(words_flat) != grid_size * group_size:
        raise ValueError("wordsFlat length must equal gridSize * groupSize")

    if doc.get('difficulty') not in DIFFICULTIES:
        raise ValueError("Invalid difficulty")
    if doc.get('visibility') not in VISIBILITIES:
        raise ValueError("Invalid visibility")
    return True
