"""
Game Constants: Shared Definitions
==================================

Single source of truth for constants used across game_logic.py,
puzzle_normalizer.py, run_persistence.py and connections_server.py.
"""

import os
import string

# Group labels assigned by category position: A, B, C, ...
GROUP_LABELS = tuple(string.ascii_uppercase)

# Bounds for both the number of groups and the words per group
MIN_GRID_SIZE = 2
MAX_GRID_SIZE = 10

# Classic board: 4 groups of 4
DEFAULT_GRID_SIZE = 4
DEFAULT_GROUP_SIZE = 4

DIFFICULTIES = frozenset({"easy", "medium", "hard"})
VISIBILITIES = frozenset({"public", "unlisted", "private"})

# Local snapshots are stored under "connections:<puzzleId>"
LOCAL_KEY_PREFIX = "connections:"

# Trailing-edge debounce for run saves (seconds); SAVE_DEBOUNCE_SECONDS overrides
DEFAULT_SAVE_DELAY = 0.25

# Served for /puzzles/example without touching the database
DEMO_PUZZLE = {
    "id": "example",
    "title": "Example Demo: Learn the Connections",
    "description": "Find four groups of four words that share something in common.",
    "gridSize": 4,
    "groupSize": 4,
    "categories": [
        {"title": "Breakfast Foods", "words": ["Pancakes", "Omelet", "Bagel", "Yogurt"]},
        {"title": "Blue Things", "words": ["Sky", "Jeans", "Sapphire", "Ocean"]},
        {"title": "Dog Breeds", "words": ["Beagle", "Poodle", "Bulldog", "Husky"]},
        {"title": "Computer Parts", "words": ["CPU", "Mouse", "Keyboard", "Monitor"]},
    ],
}


def group_label(index):
    """Label for the group at a 0-based position."""
    return GROUP_LABELS[index]


def save_delay():
    """Debounce delay for run saves, from SAVE_DEBOUNCE_SECONDS when set."""
    raw = os.environ.get("SAVE_DEBOUNCE_SECONDS", "")
    if not raw:
        return DEFAULT_SAVE_DELAY
    try:
        return max(0.0, float(raw))
    except ValueError:
        print(f"[WARNING] SAVE_DEBOUNCE_SECONDS={raw!r} is not a number, using {DEFAULT_SAVE_DELAY}")
        return DEFAULT_SAVE_DELAY
