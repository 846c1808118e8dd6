import os
import json
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from neuroleaf.utils import get_logger

LOG = get_logger()

DATABASE_PATH = os.getenv('DATABASE_PATH', 'neuroleaf.db')

SCHEMA = """
-- Accounts (one per user, id mirrors the user id)
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    name TEXT,
    subscription_tier TEXT NOT NULL DEFAULT 'free',      -- free, pro
    subscription_status TEXT NOT NULL DEFAULT 'active',  -- active, canceled, past_due
    subscription_expires_at TEXT,
    stripe_customer_id TEXT,
    stripe_subscription_id TEXT,
    deck_limit INTEGER NOT NULL DEFAULT 3,               -- -1 means unlimited
    flashcard_limit_per_deck INTEGER NOT NULL DEFAULT 50,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Decks
CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    visibility TEXT NOT NULL DEFAULT 'private',          -- private, public, shared
    tags TEXT NOT NULL DEFAULT '[]',                      -- JSON list
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES accounts(id) ON DELETE CASCADE
);

-- Flashcards
CREATE TABLE IF NOT EXISTS flashcards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL,
    front_content TEXT NOT NULL,
    back_content TEXT NOT NULL,
    front_media_urls TEXT NOT NULL DEFAULT '[]',          -- JSON list
    back_media_urls TEXT NOT NULL DEFAULT '[]',           -- JSON list
    tags TEXT NOT NULL DEFAULT '[]',                      -- JSON list
    difficulty TEXT NOT NULL DEFAULT 'medium',            -- easy, medium, hard
    position INTEGER NOT NULL DEFAULT 0,
    ai_generated INTEGER NOT NULL DEFAULT 0,
    public_data TEXT NOT NULL DEFAULT '{}',               -- JSON object
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (deck_id) REFERENCES decks(id) ON DELETE CASCADE
);

-- AI generation log, one row per generation (also the monthly usage counter)
CREATE TABLE IF NOT EXISTS ai_generations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    deck_id TEXT,
    flashcard_id TEXT,
    generation_type TEXT NOT NULL,                        -- flashcard, test_questions, grading, ...
    prompt TEXT,
    generated_content TEXT,                               -- JSON
    model_used TEXT,
    tokens_used INTEGER,
    generation_time_ms INTEGER,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES accounts(id) ON DELETE CASCADE
);

-- Test sessions
CREATE TABLE IF NOT EXISTS test_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    deck_id TEXT NOT NULL,
    session_name TEXT,
    test_mode TEXT NOT NULL DEFAULT 'flashcard',          -- flashcard, ai_questions
    difficulty_level TEXT NOT NULL DEFAULT 'medium',
    total_questions INTEGER NOT NULL DEFAULT 0,
    questions_completed INTEGER NOT NULL DEFAULT 0,
    average_score REAL,
    time_spent_seconds INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',                -- active, completed, abandoned
    test_questions TEXT,                                  -- JSON
    test_results TEXT,                                    -- JSON
    overall_analysis TEXT,                                -- JSON
    grading_metadata TEXT,                                -- JSON
    started_at TEXT NOT NULL,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES accounts(id) ON DELETE CASCADE,
    FOREIGN KEY (deck_id) REFERENCES decks(id) ON DELETE CASCADE
);

-- Test responses
CREATE TABLE IF NOT EXISTS test_responses (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    flashcard_id TEXT,
    question_text TEXT NOT NULL,
    question_type TEXT NOT NULL DEFAULT 'open_ended',     -- open_ended, multiple_choice, true_false
    question_options TEXT NOT NULL DEFAULT '[]',          -- JSON list
    expected_answer TEXT,
    correct_answer TEXT,                                  -- JSON (option index or boolean)
    user_response TEXT,
    ai_score REAL,
    ai_feedback TEXT,
    ai_model_used TEXT,
    is_correct INTEGER,
    response_time_seconds INTEGER,
    question_metadata TEXT,                               -- JSON
    created_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES test_sessions(id) ON DELETE CASCADE
);

-- Monthly AI token usage
CREATE TABLE IF NOT EXISTS ai_token_usage (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    month_year TEXT NOT NULL,                             -- YYYY-MM
    tokens_used INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, month_year),
    FOREIGN KEY (user_id) REFERENCES accounts(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_decks_user ON decks(user_id);
CREATE INDEX IF NOT EXISTS idx_decks_visibility ON decks(visibility);
CREATE INDEX IF NOT EXISTS idx_flashcards_deck ON flashcards(deck_id, position);
CREATE INDEX IF NOT EXISTS idx_ai_generations_user ON ai_generations(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_test_sessions_user ON test_sessions(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_test_sessions_deck ON test_sessions(deck_id);
CREATE INDEX IF NOT EXISTS idx_test_responses_session ON test_responses(session_id);
CREATE INDEX IF NOT EXISTS idx_accounts_customer ON accounts(stripe_customer_id);
"""

TABLES = ('accounts', 'decks', 'flashcards', 'ai_generations', 'test_sessions', 'test_responses', 'ai_token_usage')


class DatabaseError(Exception):
    pass


def new_id() -> str:
    return str(uuid.uuid4())


def to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


def from_json(value: Optional[str], default: Any = None) -> Any:
    if value is None or value == '':
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        LOG.warning('json_column_decode_failed', extra={'value_preview': str(value)[:80]})
        return default


def row_to_dict(row: Optional[sqlite3.Row], json_fields: Optional[Dict[str, Any]] = None, bool_fields: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    """Convert a sqlite row to a plain dict, decoding JSON and boolean columns.

    `json_fields` maps column name to the default used when the column is empty.
    """
    if row is None:
        return None
    d = dict(row)
    for field, default in (json_fields or {}).items():
        if field in d:
            d[field] = from_json(d[field], default)
    for field in bool_fields:
        if field in d and d[field] is not None:
            d[field] = bool(d[field])
    return d


class Database:
    _instance = None

    def __init__(self, path: Optional[str] = None):
        self.path = path or os.getenv('DATABASE_PATH', DATABASE_PATH)
        self.init_schema()
        LOG.info('Database initialized', extra={'path': self.path})

    @classmethod
    def get_instance(cls) -> 'Database':
        if cls._instance is None:
            cls._instance = Database()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        cls._instance = None

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    @contextmanager
    def connect(self):
        try:
            conn = self._open()
        except sqlite3.Error as e:
            raise DatabaseError(str(e)) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            LOG.exception('database_error', exc_info=True)
            raise DatabaseError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self):
        with self.connect() as conn:
            conn.executescript(SCHEMA)

    def health_check(self) -> bool:
        try:
            with self.connect() as conn:
                conn.execute('SELECT 1').fetchone()
            return True
        except DatabaseError:
            return False

    def fetch_one(self, sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        with self.connect() as conn:
            return conn.execute(sql, tuple(params)).fetchone()

    def fetch_all(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self.connect() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def fetch_value(self, sql: str, params: Iterable = (), default: Any = None) -> Any:
        row = self.fetch_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    def execute(self, sql: str, params: Iterable = ()) -> int:
        """Run a single write statement and return the affected row count."""
        with self.connect() as conn:
            cur = conn.execute(sql, tuple(params))
            return cur.rowcount

    def execute_many(self, statements: List[tuple]) -> None:
        """Run several (sql, params) statements in one transaction."""
        with self.connect() as conn:
            for sql, params in statements:
                conn.execute(sql, tuple(params))


def get_db() -> Database:
    return Database.get_instance()
