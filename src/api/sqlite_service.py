"""
SQLite-backed storage service.

Plain relational tables with foreign keys enforced on every connection.
`query_one` / `query_many` / `execute` are the thin parameterized query
helpers everything else goes through; they also translate sqlite3 errors
into the API error taxonomy.
"""

import aiosqlite
import json
import os
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence

from .errors import ConflictError, StoreError, ValidationError
from . import config

import logging
logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS knowledge_base (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        display_title TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(category, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS wizard_steps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        category TEXT NOT NULL UNIQUE,
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prompt_versions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        system_prompt TEXT NOT NULL,
        user_prompt TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT 0,
        notes TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS test_cases (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email_thread TEXT NOT NULL,
        customer_email TEXT,
        customer_name TEXT,
        subject TEXT,
        order_number TEXT,
        expected_behavior TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluator_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        check_prompt TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 0,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        category TEXT,
        knowledge_base_id INTEGER REFERENCES knowledge_base(id) ON DELETE SET NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS test_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        test_case_id INTEGER REFERENCES test_cases(id) ON DELETE CASCADE,
        prompt_version_id INTEGER REFERENCES prompt_versions(id) ON DELETE CASCADE,
        agent_response TEXT NOT NULL,
        evaluator_score INTEGER CHECK (evaluator_score >= 0 AND evaluator_score <= 100),
        evaluator_reasoning TEXT,
        rule_checks TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_knowledge_base_category ON knowledge_base(category)",
    "CREATE INDEX IF NOT EXISTS idx_test_results_test_case ON test_results(test_case_id)",
    "CREATE INDEX IF NOT EXISTS idx_test_results_prompt_version ON test_results(prompt_version_id)",
    "CREATE INDEX IF NOT EXISTS idx_evaluator_rules_kb ON evaluator_rules(knowledge_base_id)",
    "CREATE INDEX IF NOT EXISTS idx_evaluator_rules_category ON evaluator_rules(category)",
]

_RULE_SELECT = """
    SELECT er.*,
           kb.category AS kb_category,
           kb.key AS kb_key,
           kb.display_title AS kb_display_title,
           COALESCE(ws.title, ws2.title) AS step_title
    FROM evaluator_rules er
    LEFT JOIN knowledge_base kb ON er.knowledge_base_id = kb.id
    LEFT JOIN wizard_steps ws ON kb.category = ws.category
    LEFT JOIN wizard_steps ws2 ON er.category = ws2.category
"""

_RESULT_SELECT = """
    SELECT r.*,
           tc.name AS test_case_name,
           pv.name AS prompt_version_name
    FROM test_results r
    LEFT JOIN test_cases tc ON r.test_case_id = tc.id
    LEFT JOIN prompt_versions pv ON r.prompt_version_id = pv.id
"""

# Columns a partial update may touch, per table
_UPDATABLE = {
    "knowledge_base": ("category", "key", "value", "display_title", "sort_order"),
    "prompt_versions": ("name", "system_prompt", "user_prompt", "notes"),
    "test_cases": ("name", "email_thread", "customer_email", "customer_name",
                   "subject", "order_number", "expected_behavior", "tags"),
    "evaluator_rules": ("name", "description", "check_prompt", "priority", "is_active", "category"),
}


def _translate_error(e: sqlite3.Error) -> Exception:
    message = str(e)
    if isinstance(e, sqlite3.IntegrityError):
        if "UNIQUE" in message:
            return ConflictError(f"Record already exists ({message})")
        if "FOREIGN KEY" in message:
            return ValidationError("Referenced record does not exist")
        return ValidationError(f"Invalid record: {message}")
    return StoreError(message)


class SQLiteService:
    """Local SQLite storage service."""

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path or config.SQLITE_DB_PATH
        self._initialized = False

    async def _ensure_initialized(self):
        if self._initialized:
            return
        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            for statement in SCHEMA:
                await db.execute(statement)
            await db.commit()
        self._initialized = True

    @asynccontextmanager
    async def _conn(self):
        """Open a connection with dict-like rows and foreign keys enforced."""
        try:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys = ON")
                yield db
        except sqlite3.Error as e:
            translated = _translate_error(e)
            if isinstance(translated, StoreError):
                logger.error(f"SQLite error: {e}", exc_info=True)
            raise translated from e

    # ===== Query helpers =====

    async def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        async with self._conn() as db:
            cursor = await db.execute(sql, tuple(params))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def query_many(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        async with self._conn() as db:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        async with self._conn() as db:
            cursor = await db.execute(sql, tuple(params))
            await db.commit()
            return cursor.rowcount

    async def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run an INSERT and return the new row id."""
        async with self._conn() as db:
            cursor = await db.execute(sql, tuple(params))
            await db.commit()
            return cursor.lastrowid

    async def _update_fields(self, table: str, record_id: int, fields: Dict[str, Any], touch: bool = False) -> int:
        allowed = _UPDATABLE[table]
        columns = [c for c in fields if c in allowed]
        if not columns:
            return 0
        assignments = [f"{c} = ?" for c in columns]
        if touch:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        params = [fields[c] for c in columns] + [record_id]
        return await self.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",
            params
        )

    # ===== Knowledge Base =====

    async def list_knowledge(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        if category:
            return await self.query_many(
                "SELECT * FROM knowledge_base WHERE category = ? ORDER BY sort_order, id",
                (category,)
            )
        return await self.query_many("SELECT * FROM knowledge_base ORDER BY category, sort_order, id")

    async def get_knowledge_entry(self, entry_id: int) -> Optional[Dict[str, Any]]:
        return await self.query_one("SELECT * FROM knowledge_base WHERE id = ?", (entry_id,))

    async def get_knowledge_entry_by_key(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        return await self.query_one(
            "SELECT * FROM knowledge_base WHERE category = ? AND key = ?",
            (category, key)
        )

    async def next_knowledge_sort_order(self, category: str) -> int:
        """max(sort_order) + 1 within the category, 0 when it has no entries."""
        row = await self.query_one(
            "SELECT MAX(sort_order) AS max_order FROM knowledge_base WHERE category = ?",
            (category,)
        )
        if not row or row["max_order"] is None:
            return 0
        return row["max_order"] + 1

    async def create_knowledge_entry(self, category: str, key: str, value: str,
                                     display_title: Optional[str] = None,
                                     sort_order: Optional[int] = None) -> Dict[str, Any]:
        if sort_order is None:
            sort_order = await self.next_knowledge_sort_order(category)
        entry_id = await self.insert(
            "INSERT INTO knowledge_base (category, key, value, display_title, sort_order) VALUES (?, ?, ?, ?, ?)",
            (category, key, value, display_title, sort_order)
        )
        return await self.get_knowledge_entry(entry_id)

    async def upsert_knowledge_entry(self, category: str, key: str, value: str,
                                     display_title: Optional[str], sort_order: int) -> Dict[str, Any]:
        """Insert or, on (category, key) conflict, update value and display title."""
        await self.execute(
            """
            INSERT INTO knowledge_base (category, key, value, display_title, sort_order)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (category, key) DO UPDATE SET
                value = excluded.value,
                display_title = excluded.display_title,
                updated_at = CURRENT_TIMESTAMP
            """,
            (category, key, value, display_title, sort_order)
        )
        return await self.get_knowledge_entry_by_key(category, key)

    async def update_knowledge_entry(self, entry_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        await self._update_fields("knowledge_base", entry_id, fields, touch=True)
        return await self.get_knowledge_entry(entry_id)

    async def delete_knowledge_entry(self, entry_id: int) -> bool:
        return await self.execute("DELETE FROM knowledge_base WHERE id = ?", (entry_id,)) > 0

    # ===== Wizard Steps =====

    async def list_wizard_steps(self) -> List[Dict[str, Any]]:
        return await self.query_many("SELECT * FROM wizard_steps ORDER BY sort_order, id")

    async def next_wizard_step_sort_order(self) -> int:
        row = await self.query_one("SELECT MAX(sort_order) AS max_order FROM wizard_steps")
        if not row or row["max_order"] is None:
            return 0
        return row["max_order"] + 1

    async def create_wizard_step(self, title: str, category: str, sort_order: Optional[int] = None) -> Dict[str, Any]:
        if sort_order is None:
            sort_order = await self.next_wizard_step_sort_order()
        step_id = await self.insert(
            "INSERT INTO wizard_steps (title, category, sort_order) VALUES (?, ?, ?)",
            (title, category, sort_order)
        )
        return await self.query_one("SELECT * FROM wizard_steps WHERE id = ?", (step_id,))

    async def insert_wizard_step_if_missing(self, title: str, category: str) -> bool:
        """Append a step at the end of the wizard; an existing category is left alone."""
        inserted = await self.execute(
            """
            INSERT INTO wizard_steps (title, category, sort_order)
            VALUES (?, ?, (SELECT COALESCE(MAX(sort_order) + 1, 0) FROM wizard_steps))
            ON CONFLICT (category) DO NOTHING
            """,
            (title, category)
        )
        return inserted > 0

    # ===== Prompt Versions =====

    async def list_prompt_versions(self) -> List[Dict[str, Any]]:
        return await self.query_many("SELECT * FROM prompt_versions ORDER BY created_at DESC, id DESC")

    async def get_prompt_version(self, prompt_id: int) -> Optional[Dict[str, Any]]:
        return await self.query_one("SELECT * FROM prompt_versions WHERE id = ?", (prompt_id,))

    async def get_active_prompt_version(self) -> Optional[Dict[str, Any]]:
        return await self.query_one("SELECT * FROM prompt_versions WHERE is_active = 1 LIMIT 1")

    async def create_prompt_version(self, name: str, system_prompt: str, user_prompt: str,
                                    notes: Optional[str] = None) -> Dict[str, Any]:
        prompt_id = await self.insert(
            "INSERT INTO prompt_versions (name, system_prompt, user_prompt, is_active, notes) VALUES (?, ?, ?, 0, ?)",
            (name, system_prompt, user_prompt, notes)
        )
        return await self.get_prompt_version(prompt_id)

    async def update_prompt_version(self, prompt_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        await self._update_fields("prompt_versions", prompt_id, fields)
        return await self.get_prompt_version(prompt_id)

    async def set_active_prompt_version(self, prompt_id: int) -> bool:
        """Make exactly one prompt version active.

        A single UPDATE flips every row in one statement, so concurrent
        activations can never leave zero or two active versions.
        """
        async with self._conn() as db:
            # Take the write lock up front so concurrent activations queue
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                """
                UPDATE prompt_versions SET is_active = (id = ?)
                WHERE EXISTS (SELECT 1 FROM prompt_versions WHERE id = ?)
                """,
                (prompt_id, prompt_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_prompt_version(self, prompt_id: int) -> bool:
        return await self.execute("DELETE FROM prompt_versions WHERE id = ?", (prompt_id,)) > 0

    # ===== Test Cases =====

    async def list_test_cases(self, tag: Optional[str] = None) -> List[Dict[str, Any]]:
        if tag:
            return await self.query_many(
                """
                SELECT * FROM test_cases
                WHERE EXISTS (SELECT 1 FROM json_each(test_cases.tags) WHERE json_each.value = ?)
                ORDER BY created_at DESC, id DESC
                """,
                (tag,)
            )
        return await self.query_many("SELECT * FROM test_cases ORDER BY created_at DESC, id DESC")

    async def get_test_case(self, test_case_id: int) -> Optional[Dict[str, Any]]:
        return await self.query_one("SELECT * FROM test_cases WHERE id = ?", (test_case_id,))

    async def create_test_case(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        test_case_id = await self.insert(
            """
            INSERT INTO test_cases (name, email_thread, customer_email, customer_name,
                                    subject, order_number, expected_behavior, tags)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                fields["name"], fields["email_thread"], fields.get("customer_email"),
                fields.get("customer_name"), fields.get("subject"), fields.get("order_number"),
                fields.get("expected_behavior"), json.dumps(fields.get("tags") or []),
            )
        )
        return await self.get_test_case(test_case_id)

    async def update_test_case(self, test_case_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if "tags" in fields:
            fields = {**fields, "tags": json.dumps(fields["tags"] or [])}
        await self._update_fields("test_cases", test_case_id, fields)
        return await self.get_test_case(test_case_id)

    async def delete_test_case(self, test_case_id: int) -> bool:
        return await self.execute("DELETE FROM test_cases WHERE id = ?", (test_case_id,)) > 0

    # ===== Evaluator Rules =====

    async def list_evaluator_rules(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        where = "" if include_inactive else "WHERE er.is_active = 1"
        return await self.query_many(f"{_RULE_SELECT} {where} ORDER BY er.priority DESC, er.name")

    async def get_evaluator_rule(self, rule_id: int) -> Optional[Dict[str, Any]]:
        return await self.query_one(f"{_RULE_SELECT} WHERE er.id = ?", (rule_id,))

    async def create_evaluator_rule(self, name: str, check_prompt: str, description: Optional[str] = None,
                                    priority: int = 0, is_active: bool = True,
                                    category: Optional[str] = None,
                                    knowledge_base_id: Optional[int] = None) -> Dict[str, Any]:
        rule_id = await self.insert(
            """
            INSERT INTO evaluator_rules (name, description, check_prompt, priority, is_active, category, knowledge_base_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (name, description, check_prompt, priority, int(is_active), category, knowledge_base_id)
        )
        return await self.get_evaluator_rule(rule_id)

    async def update_evaluator_rule(self, rule_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if "is_active" in fields and fields["is_active"] is not None:
            fields = {**fields, "is_active": int(fields["is_active"])}
        await self._update_fields("evaluator_rules", rule_id, fields)
        return await self.get_evaluator_rule(rule_id)

    async def delete_evaluator_rule(self, rule_id: int) -> bool:
        return await self.execute("DELETE FROM evaluator_rules WHERE id = ?", (rule_id,)) > 0

    # ===== Test Results =====

    async def list_test_results(self, test_case_id: Optional[int] = None,
                                prompt_version_id: Optional[int] = None) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if test_case_id is not None:
            clauses.append("r.test_case_id = ?")
            params.append(test_case_id)
        if prompt_version_id is not None:
            clauses.append("r.prompt_version_id = ?")
            params.append(prompt_version_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return await self.query_many(
            f"{_RESULT_SELECT} {where} ORDER BY r.created_at DESC, r.id DESC",
            params
        )

    async def get_test_result(self, result_id: int) -> Optional[Dict[str, Any]]:
        return await self.query_one(f"{_RESULT_SELECT} WHERE r.id = ?", (result_id,))

    async def create_test_result(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        rule_checks = fields.get("rule_checks")
        result_id = await self.insert(
            """
            INSERT INTO test_results (test_case_id, prompt_version_id, agent_response,
                                      evaluator_score, evaluator_reasoning, rule_checks)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                fields.get("test_case_id"), fields.get("prompt_version_id"), fields["agent_response"],
                fields.get("evaluator_score"), fields.get("evaluator_reasoning"),
                json.dumps(rule_checks) if rule_checks is not None else None,
            )
        )
        return await self.get_test_result(result_id)

    # ===== Default data (Feature: auto-seed) =====

    async def ensure_default_evaluator_rules(self) -> int:
        """Insert any built-in evaluator rule whose name is not taken yet.

        Returns the number of rules seeded (0 if all were already present).
        """
        from .seed_service import DEFAULT_EVALUATOR_RULES

        seeded = 0
        async with self._conn() as db:
            for rule in DEFAULT_EVALUATOR_RULES:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO evaluator_rules (name, description, check_prompt) VALUES (?, ?, ?)",
                    (rule["name"], rule["description"], rule["check_prompt"])
                )
                seeded += cursor.rowcount
            await db.commit()
        return seeded

    async def ensure_default_wizard_steps(self) -> int:
        """Insert the built-in wizard steps whose category is missing."""
        from .seed_service import DEFAULT_WIZARD_STEPS

        seeded = 0
        async with self._conn() as db:
            for sort_order, (title, category) in enumerate(DEFAULT_WIZARD_STEPS, start=1):
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO wizard_steps (title, category, sort_order) VALUES (?, ?, ?)",
                    (title, category, sort_order)
                )
                seeded += cursor.rowcount
            await db.commit()
        return seeded


# Singleton
_service: Optional[SQLiteService] = None


def get_db_service() -> SQLiteService:
    global _service
    if not _service:
        _service = SQLiteService()
    return _service
