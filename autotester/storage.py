"""SQLite-backed storage for macros, steps, runs, step results and artifacts."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .locators import parse_locators
from .models import ARTIFACT_TYPES, RUNNING, Artifact, Locator, Macro, NewStep, RunSummary, Step

LOGGER = logging.getLogger("autotester.storage")

DB_ENV_VAR = "AUTOTESTER_DB"
DEFAULT_DB_NAME = "autotester.sqlite"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS macros (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  description TEXT,
  base_url TEXT,
  created_at TEXT NOT NULL DEFAULT (datetime('now')),
  created_by TEXT
);

CREATE TABLE IF NOT EXISTS macro_steps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  macro_id INTEGER NOT NULL,
  order_index INTEGER NOT NULL,
  action_type TEXT NOT NULL,
  locators TEXT,
  value TEXT,
  timeouts TEXT,
  enabled INTEGER NOT NULL DEFAULT 1,
  UNIQUE (macro_id, order_index),
  FOREIGN KEY (macro_id) REFERENCES macros(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS runs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  macro_id INTEGER NOT NULL,
  env_name TEXT NOT NULL,
  browser TEXT NOT NULL,
  headless INTEGER NOT NULL,
  started_at TEXT NOT NULL DEFAULT (datetime('now')),
  finished_at TEXT,
  status TEXT,
  summary TEXT,
  FOREIGN KEY (macro_id) REFERENCES macros(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS run_step_results (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  run_id INTEGER NOT NULL,
  step_id INTEGER NOT NULL,
  status TEXT NOT NULL,
  started_at TEXT,
  finished_at TEXT,
  error_message TEXT,
  used_locator TEXT,
  screenshot_path TEXT,
  UNIQUE (run_id, step_id),
  FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE,
  FOREIGN KEY (step_id) REFERENCES macro_steps(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS artifacts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  run_id INTEGER NOT NULL,
  type TEXT NOT NULL,
  storage_url TEXT,
  created_at TEXT NOT NULL DEFAULT (datetime('now')),
  FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE
);
"""


def resolve_db_path(raw: Optional[str] = None) -> Path:
    value = raw or os.getenv(DB_ENV_VAR)
    if value and value.strip():
        return Path(value.strip()).expanduser().resolve()
    return Path.cwd() / DEFAULT_DB_NAME


def open_repository(path: Optional[Any] = None) -> "MacroRepository":
    """Open (and initialise) the SQLite database and wrap it in a repository."""
    db_path = path if path == ":memory:" else resolve_db_path(str(path) if path else None)
    connection = sqlite3.connect(str(db_path))
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    connection.executescript(SCHEMA_SQL)
    LOGGER.debug("Opened database %s", db_path)
    return MacroRepository(connection)


def _encode_timeouts(timeout_ms: Optional[int]) -> Optional[str]:
    if timeout_ms is None:
        return None
    return json.dumps({"step": timeout_ms})


def _decode_timeouts(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid step timeouts %r", raw)
        return None
    step = parsed.get("step") if isinstance(parsed, dict) else None
    if isinstance(step, (int, float)) and not isinstance(step, bool) and step > 0:
        return int(step)
    return None


class MacroRepository:
    """Read/write access to the autotester schema over one connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection

    def close(self) -> None:
        self.connection.close()

    def ping(self) -> None:
        self.connection.execute("SELECT 1").fetchone()

    # Macros ------------------------------------------------------------

    def list_macros(self) -> List[Macro]:
        rows = self.connection.execute(
            "SELECT id, name, description, base_url, created_at, created_by FROM macros ORDER BY id DESC").fetchall()
        return [self._row_to_macro(row) for row in rows]

    def create_macro(
        self,
        name: str,
        description: Optional[str] = None,
        base_url: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        with self.connection:
            cursor = self.connection.execute(
                "INSERT INTO macros (name, description, base_url, created_by) VALUES (?, ?, ?, ?)",
                (name, description, base_url, created_by),
            )
        return int(cursor.lastrowid)

    def get_macro(self, macro_id: int) -> Optional[Macro]:
        row = self.connection.execute(
            "SELECT id, name, description, base_url, created_at, created_by FROM macros WHERE id = ?",
            (macro_id, ),
        ).fetchone()
        return self._row_to_macro(row) if row else None

    def rename_macro(self, macro_id: int, name: str) -> bool:
        with self.connection:
            cursor = self.connection.execute("UPDATE macros SET name = ? WHERE id = ?", (name, macro_id))
        return cursor.rowcount > 0

    # Steps -------------------------------------------------------------

    def add_steps(self, macro_id: int, steps: Iterable[NewStep]) -> List[int]:
        ids: List[int] = []
        with self.connection:
            for step in steps:
                cursor = self.connection.execute(
                    "INSERT INTO macro_steps (macro_id, order_index, action_type, locators, value, timeouts) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        macro_id,
                        step.order_index,
                        step.action_type,
                        json.dumps([locator.to_dict() for locator in step.locators]),
                        step.value,
                        _encode_timeouts(step.timeout_ms),
                    ),
                )
                ids.append(int(cursor.lastrowid))
        return ids

    def get_steps(self, macro_id: int) -> List[Step]:
        """Enabled steps only, ordered by order_index."""
        return [step for step in self.get_all_steps(macro_id) if step.enabled]

    def get_all_steps(self, macro_id: int) -> List[Step]:
        rows = self.connection.execute(
            "SELECT id, macro_id, order_index, action_type, locators, value, timeouts, enabled "
            "FROM macro_steps WHERE macro_id = ? ORDER BY order_index",
            (macro_id, ),
        ).fetchall()
        return [self._row_to_step(row) for row in rows]

    def is_step_in_macro(self, step_id: int, macro_id: int) -> bool:
        row = self.connection.execute("SELECT id FROM macro_steps WHERE id = ? AND macro_id = ?",
                                      (step_id, macro_id)).fetchone()
        return row is not None

    def disable_step_by_order(self, macro_id: int, order_index: int) -> int:
        with self.connection:
            cursor = self.connection.execute(
                "UPDATE macro_steps SET enabled = 0 WHERE macro_id = ? AND order_index = ?", (macro_id, order_index))
        return cursor.rowcount

    def disable_step_by_id(self, step_id: int) -> int:
        with self.connection:
            cursor = self.connection.execute("UPDATE macro_steps SET enabled = 0 WHERE id = ?", (step_id, ))
        return cursor.rowcount

    # Runs --------------------------------------------------------------

    def create_run(self, macro_id: int, env_name: str, browser: str, headless: bool) -> int:
        with self.connection:
            cursor = self.connection.execute(
                "INSERT INTO runs (macro_id, env_name, browser, headless, status) VALUES (?, ?, ?, ?, ?)",
                (macro_id, env_name, browser, 1 if headless else 0, RUNNING),
            )
        return int(cursor.lastrowid)

    def finish_run(self, run_id: int, status: str, summary: Optional[RunSummary] = None) -> None:
        with self.connection:
            self.connection.execute(
                "UPDATE runs SET status = ?, finished_at = datetime('now'), summary = ? WHERE id = ?",
                (status, json.dumps(summary.to_dict()) if summary else None, run_id),
            )

    def get_run(self, run_id: int) -> Optional[Dict[str, Any]]:
        row = self.connection.execute(
            "SELECT id, macro_id, env_name, browser, headless, started_at, finished_at, status, summary "
            "FROM runs WHERE id = ?",
            (run_id, ),
        ).fetchone()
        if row is None:
            return None
        return {
            "id": row["id"],
            "macro_id": row["macro_id"],
            "env_name": row["env_name"],
            "browser": row["browser"],
            "headless": bool(row["headless"]),
            "started_at": row["started_at"],
            "finished_at": row["finished_at"],
            "status": row["status"],
            "summary": RunSummary.from_dict(json.loads(row["summary"])) if row["summary"] else None,
        }

    # pylint: disable=too-many-arguments
    def add_step_result(
        self,
        run_id: int,
        step_id: int,
        status: str,
        started_at: Optional[str] = None,
        finished_at: Optional[str] = None,
        error_message: Optional[str] = None,
        used_locator: Optional[Locator] = None,
        screenshot_path: Optional[str] = None,
    ) -> None:
        with self.connection:
            self.connection.execute(
                "INSERT INTO run_step_results (run_id, step_id, status, started_at, finished_at, error_message, "
                "used_locator, screenshot_path) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    run_id,
                    step_id,
                    status,
                    started_at,
                    finished_at,
                    error_message,
                    json.dumps(used_locator.to_dict()) if used_locator else None,
                    screenshot_path,
                ),
            )

    def get_run_step_results(self, run_id: int) -> List[Dict[str, Any]]:
        rows = self.connection.execute(
            "SELECT r.step_id, s.order_index, s.action_type, r.status, r.error_message, r.used_locator, "
            "r.screenshot_path, r.started_at, r.finished_at "
            "FROM run_step_results r JOIN macro_steps s ON r.step_id = s.id "
            "WHERE r.run_id = ? ORDER BY s.order_index",
            (run_id, ),
        ).fetchall()
        results = []
        for row in rows:
            used = json.loads(row["used_locator"]) if row["used_locator"] else None
            results.append({
                "step_id": row["step_id"],
                "order_index": row["order_index"],
                "action_type": row["action_type"],
                "status": row["status"],
                "error_message": row["error_message"],
                "used_locator": used,
                "screenshot_path": row["screenshot_path"],
                "started_at": row["started_at"],
                "finished_at": row["finished_at"],
            })
        return results

    # Artifacts ---------------------------------------------------------

    def add_artifact(self, run_id: int, artifact_type: str, storage_url: str) -> None:
        if artifact_type not in ARTIFACT_TYPES:
            raise ValueError(f"Unknown artifact type: {artifact_type}")
        with self.connection:
            self.connection.execute("INSERT INTO artifacts (run_id, type, storage_url) VALUES (?, ?, ?)",
                                    (run_id, artifact_type, storage_url))

    def list_artifacts(self, run_id: int) -> List[Artifact]:
        rows = self.connection.execute("SELECT run_id, type, storage_url FROM artifacts WHERE run_id = ? ORDER BY id",
                                       (run_id, )).fetchall()
        return [Artifact(run_id=row["run_id"], type=row["type"], storage_url=row["storage_url"]) for row in rows]

    # Row mapping -------------------------------------------------------

    @staticmethod
    def _row_to_macro(row: sqlite3.Row) -> Macro:
        return Macro(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            base_url=row["base_url"],
            created_at=row["created_at"],
            created_by=row["created_by"],
        )

    @staticmethod
    def _row_to_step(row: sqlite3.Row) -> Step:
        raw_locators = row["locators"]
        try:
            locators = parse_locators(json.loads(raw_locators) if raw_locators else [])
        except (ValueError, ConfigurationError) as exc:
            if row["enabled"]:
                raise ConfigurationError(f"Step {row['order_index']} has invalid locators: {exc}") from exc
            LOGGER.warning("Ignoring invalid locators of disabled step %s: %s", row["order_index"], exc)
            locators = []
        return Step(
            id=row["id"],
            macro_id=row["macro_id"],
            order_index=row["order_index"],
            action_type=row["action_type"],
            locators=locators,
            value=row["value"],
            timeout_ms=_decode_timeouts(row["timeouts"]),
            enabled=bool(row["enabled"]),
        )
