#!/usr/bin/env python3
"""
Puzzle File Validator
=====================

Checks puzzle documents before they are uploaded. Every document must
normalize into a playable board; with --strict it must also pass the
write-side rules (difficulty, visibility, titles, wordsFlat).

Checks fall into two categories:
  1. Errors: the board can't be built or the document would be rejected
  2. Warnings: playable but suspicious (blank words, repeated words,
               untitled categories)

Usage:
    python3 validate_puzzles.py puzzles.yaml
    python3 validate_puzzles.py puzzles.json --strict
"""

import json
import os
import sys

import yaml

from puzzle_normalizer import NormalizationError, normalize, validate_puzzle_doc


def load_puzzle_file(filepath):
    """
    Load puzzle documents from a YAML or JSON file.

    Accepts a list of documents, a single document, or {'puzzles': [...]}.
    Returns a list of (item_id, document) pairs.
    """
    filename = os.path.basename(filepath).lower()

    with open(filepath, 'r') as f:
        if filename.endswith('.json'):
            data = json.load(f)
        elif filename.endswith(('.yaml', '.yml')):
            data = yaml.safe_load(f)  # raises YAMLError with details
        else:
            raise ValueError(f"Unsupported puzzle file format: {filename}. Expected .yaml, .yml or .json")

    if isinstance(data, dict) and isinstance(data.get('puzzles'), list):
        data = data['puzzles']
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError("Unexpected file structure: expected a list of puzzles or {'puzzles': [...]}")

    items = []
    for i, doc in enumerate(data):
        item_id = str(doc.get('id', f"#{i + 1}")) if isinstance(doc, dict) else f"#{i + 1}"
        items.append((item_id, doc))
    return items


def validate_puzzle_item(item_id, doc, strict=False):
    """Validate one puzzle document. Returns (errors, warnings)."""
    errors = []
    warnings = []

    try:
        puzzle = normalize(doc, item_id)
    except NormalizationError as e:
        return [str(e)], warnings

    if strict:
        try:
            validate_puzzle_doc(doc)
        except ValueError as e:
            errors.append(str(e))

    seen = {}
    for word in puzzle['words']:
        text = word['text'].strip()
        if not text:
            warnings.append(f"Word {word['id']} has no text")
            continue
        key = text.lower()
        if key in seen:
            warnings.append(f"Word '{text}' appears twice ({seen[key]}, {word['id']})")
        else:
            seen[key] = word['id']

    for i, category in enumerate(puzzle['categories']):
        if not category['title']:
            warnings.append(f"Category {i + 1} has no title")

    return errors, warnings


def validate_file(filepath, strict=False):
    """Validate every puzzle in a file. Returns (total, passed, failed)."""
    items = load_puzzle_file(filepath)

    total = len(items)
    passed = 0
    failed = 0

    for item_id, doc in items:
        errors, warnings_list = validate_puzzle_item(item_id, doc, strict=strict)

        if errors:
            failed += 1
            print(f"\n[FAIL] {item_id}")
            for err in errors:
                print(f"  ERROR: {err}")
            for warn in warnings_list:
                print(f"  WARNING: {warn}")
        elif warnings_list:
            passed += 1
            print(f"\n[WARN] {item_id}")
            for warn in warnings_list:
                print(f"  WARNING: {warn}")
        else:
            passed += 1
            print(f"[PASS] {item_id}")

    print(f"\n{'='*40}")
    print(f"Total: {total}  Passed: {passed}  Failed: {failed}")

    return total, passed, failed


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    strict = '--strict' in args
    paths = [a for a in args if not a.startswith('--')]

    if not paths:
        print("Usage: python3 validate_puzzles.py FILE [--strict]")
        return 1

    any_failed = False
    for path in paths:
        try:
            _, _, failed = validate_file(path, strict=strict)
        except (OSError, ValueError, yaml.YAMLError) as e:
            print(f"ERROR: Cannot read {path}: {e}")
            return 1
        any_failed = any_failed or failed > 0

    return 1 if any_failed else 0


if __name__ == "__main__":
    sys.exit(main())
