#!/usr/bin/env python3
"""
Supabase Backend
================

Two stores backed by Supabase PostgreSQL:

    SupabaseDocumentStore - path-addressed JSON documents (run records,
                            per-user metadata) with get/set/delete
    PuzzleStoreSupabase   - puzzle documents for the board and browse list

Tables:
    documents - path (primary key), data (jsonb), updated_at
    puzzles   - id, title, description, data (jsonb puzzle document),
                difficulty, visibility, is_published, is_pinned,
                created_by (jsonb), published_at, created_at, updated_at
"""

import os
import subprocess
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from supabase import Client, create_client

from puzzle_normalizer import validate_puzzle_doc

# Load environment variables; search multiple locations for .env
# (worktrees don't share the main repo's .env)
_script_dir = os.path.dirname(os.path.abspath(__file__))


def _find_dotenv():
    """Find .env file: local dir, then main git repo root."""
    # 1. Standard: same directory as this script
    local_env = os.path.join(_script_dir, '.env')
    if os.path.isfile(local_env):
        return local_env
    # 2. Git worktree: find the main repo and check there
    try:
        main_tree = subprocess.check_output(
            ['git', 'worktree', 'list', '--porcelain'],
            cwd=_script_dir, stderr=subprocess.DEVNULL
        ).decode()
        for line in main_tree.splitlines():
            if line.startswith('worktree '):
                candidate = os.path.join(line.split(' ', 1)[1], '.env')
                if os.path.isfile(candidate):
                    return candidate
    except (OSError, subprocess.CalledProcessError):
        pass
    return None


_env_path = _find_dotenv()
if _env_path:
    load_dotenv(_env_path)
    print(f"Loaded .env from {_env_path}")


def _utc_now():
    return datetime.now(timezone.utc).isoformat()


def get_supabase_client() -> Client:
    """Create a Supabase client from SUPABASE_URL / SUPABASE_ANON_KEY."""
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_ANON_KEY")

    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set in environment")

    return create_client(url, key)


def deep_merge(base: Dict, fields: Dict) -> Dict:
    """Merge `fields` into a copy of `base`; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SupabaseDocumentStore:
    """Path-addressed JSON documents, e.g. 'users/<uid>/runs/<puzzleId>'."""

    TABLE = 'documents'

    def __init__(self, client: Client = None):
        self.client = client or get_supabase_client()

    def get(self, path: str) -> Optional[Dict]:
        result = self.client.table(self.TABLE).select('data').eq('path', path).execute()
        if not result.data:
            return None
        return result.data[0].get('data') or {}

    def set(self, path: str, fields: Dict, merge: bool = False) -> None:
        """
        Write a document. With merge=True, existing fields not named in
        `fields` are kept (read-modify-write).
        """
        data = fields
        if merge:
            existing = self.get(path) or {}
            data = deep_merge(existing, fields)

        self.client.table(self.TABLE).upsert({
            'path': path,
            'data': data,
            'updated_at': _utc_now(),
        }, on_conflict='path').execute()

    def delete(self, path: str) -> None:
        self.client.table(self.TABLE).delete().eq('path', path).execute()


def _title_case(text):
    return text[:1].upper() + text[1:].lower() if text else text


class PuzzleStoreSupabase:
    """Supabase-backed puzzle documents."""

    TABLE = 'puzzles'

    def __init__(self, client: Client = None):
        self.client = client or get_supabase_client()

    def get_puzzle(self, puzzle_id: str) -> Optional[Dict]:
        """
        Retrieve the raw puzzle document (any stored shape).

        Returns:
            Dict with the stored puzzle fields plus 'id', or None
        """
        result = self.client.table(self.TABLE).select('*').eq('id', str(puzzle_id)).execute()

        if not result.data:
            return None

        row = result.data[0]
        raw = dict(row.get('data') or {})
        raw['id'] = row['id']
        if row.get('title') and 'title' not in raw:
            raw['title'] = row['title']
        if row.get('description') and 'description' not in raw:
            raw['description'] = row['description']
        return raw

    def _browse_strategies(self) -> List[Tuple[str, Callable]]:
        """
        Browse queries in order of preference. Later ones need fewer
        columns/indexes and are only tried when an earlier one fails.
        """
        return [
            ('publishedAt', lambda q: q.order('published_at', desc=True)),
            ('createdAt', lambda q: q.order('created_at', desc=True)),
            ('unordered', lambda q: q),
        ]

    def list_puzzles(self, max_results: int = 60) -> List[Dict]:
        """List published puzzles as browse cards, newest first when possible."""
        last_error = None
        for name, apply_order in self._browse_strategies():
            try:
                query = self.client.table(self.TABLE).select('*').eq('is_published', True)
                result = apply_order(query).limit(max_results).execute()
            except Exception as e:
                print(f"[Browse] Query strategy '{name}' failed: {e}")
                last_error = e
                continue
            return [self._browse_card(row) for row in result.data or []]

        raise last_error

    def _browse_card(self, row: Dict) -> Dict:
        data = row.get('data') or {}
        categories = data.get('categories') or []
        first_title = categories[0].get('title') if categories and isinstance(categories[0], dict) else None
        created_by = row.get('created_by') or {}

        return {
            'id': row['id'],
            'title': row.get('title') or data.get('title') or 'Untitled',
            'description': row.get('description') or data.get('description') or '',
            'category': data.get('category') or first_title or 'General',
            'difficulty': _title_case(str(row.get('difficulty') or data.get('difficulty') or 'medium')),
            'solveCount': data.get('solveCount', 0),
            'createdBy': created_by.get('displayName') or created_by.get('email') or 'Anonymous',
            'imageUrl': data.get('imageUrl', ''),
            'isPinned': bool(row.get('is_pinned')),
            'createdAt': row.get('published_at') or row.get('created_at') or _utc_now(),
        }

    def save_puzzle(self, puzzle_data: Dict, created_by: Dict = None) -> Dict:
        """
        Validate and save a puzzle document.

        Args:
            puzzle_data: Puzzle document (categories, wordsFlat, sizes, ...)
            created_by: Optional {uid, displayName, email} of the author

        Returns:
            Dict with storage info
        """
        validate_puzzle_doc(puzzle_data)

        puzzle_id = str(puzzle_data.get('id') or uuid.uuid4().hex)
        data = {k: v for k, v in puzzle_data.items() if k != 'id'}
        visibility = puzzle_data['visibility']
        is_published = bool(puzzle_data.get('isPublished', visibility == 'public'))

        record = {
            'id': puzzle_id,
            'title': puzzle_data.get('title') or 'Untitled',
            'description': puzzle_data.get('description', ''),
            'data': data,
            'difficulty': puzzle_data['difficulty'],
            'visibility': visibility,
            'is_published': is_published,
            'created_by': created_by or {},
            'updated_at': _utc_now(),
        }
        if is_published:
            record['published_at'] = _utc_now()

        result = self.client.table(self.TABLE).upsert(record, on_conflict='id').execute()

        if not result.data:
            raise Exception("Failed to save puzzle")

        return {'id': puzzle_id, 'is_published': is_published}

    def delete_puzzle(self, puzzle_id: str) -> bool:
        """Delete a puzzle from storage."""
        result = self.client.table(self.TABLE).delete().eq('id', str(puzzle_id)).execute()
        return bool(result.data)


# Factory functions: Supabase is required
def get_puzzle_store():
    """Get Supabase puzzle store instance. Raises if not configured."""
    url = os.environ.get("SUPABASE_URL")
    if not url:
        raise ValueError("SUPABASE_URL not set in environment. Check .env file.")
    return PuzzleStoreSupabase()


def get_document_store():
    """Get Supabase document store instance. Raises if not configured."""
    url = os.environ.get("SUPABASE_URL")
    if not url:
        raise ValueError("SUPABASE_URL not set in environment. Check .env file.")
    return SupabaseDocumentStore()
