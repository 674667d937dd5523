"""Block log and SQLite audit trail.

Two sinks, both best-effort (a broken log never changes a decision):

  - a plain-text block log via ``logging`` (``POLICY_GUARD_LOG_FILE``)
  - an ``events`` table in a SQLite database (``POLICY_GUARD_DB_PATH``),
    filtered by ``POLICY_GUARD_LOG_LEVEL``: ``off``, ``actions`` (default,
    skips allowed calls) or ``all``
"""

import contextlib
import datetime
import json
import logging
import os
import sqlite3
import tempfile
from pathlib import Path

logger = logging.getLogger("policy-guard")

_LOG_DIR = Path.home() / ".claude" / "logs"
_DEFAULT_LOG_PATH = _LOG_DIR / "policy-guard.log"
_DEFAULT_DB_PATH = _LOG_DIR / "policy-guard.db"

# Bulky tool_input fields left out of tool-use records
_LONG_FIELDS = {
    "Edit": ("old_string", "new_string"),
    "MultiEdit": ("edits",),
    "Write": ("content",),
}

_db_conn = None
_db_path = None


def _validate_user_path(p, default):
    """Ensure path is within user's home or temp directory. Falls back to default."""
    try:
        resolved = Path(p).expanduser().resolve()
        home = Path.home().resolve()
        tmp = Path(tempfile.gettempdir()).resolve()
        if resolved.is_relative_to(home) or resolved.is_relative_to(tmp):
            return resolved
    except (OSError, ValueError):
        pass
    return default


def log_level():
    return os.environ.get("POLICY_GUARD_LOG_LEVEL", "actions").lower()


def setup_logging():
    """Attach the block-log file handler (once per process)."""
    if logger.handlers:
        return logger
    path = _validate_user_path(
        os.environ.get("POLICY_GUARD_LOG_FILE", str(_DEFAULT_LOG_PATH)), _DEFAULT_LOG_PATH
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def _init_db():
    """Create/open the audit database with WAL mode.

    Caches the connection in _db_conn. Returns the connection or None on error.
    """
    global _db_conn, _db_path
    path = _validate_user_path(
        os.environ.get("POLICY_GUARD_DB_PATH", str(_DEFAULT_DB_PATH)), _DEFAULT_DB_PATH
    )
    if _db_conn is not None and path == _db_path:
        return _db_conn
    close()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Set umask so WAL/SHM files are also owner-only
        old_umask = os.umask(0o177)
        try:
            conn = sqlite3.connect(str(path), timeout=5)
        finally:
            os.umask(old_umask)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=1000")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                session_id TEXT,
                category TEXT NOT NULL,
                rule TEXT,
                action TEXT NOT NULL,
                tool TEXT,
                command TEXT,
                detail TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id);
            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
        """)
        conn.commit()
        with contextlib.suppress(OSError):
            os.chmod(str(path), 0o600)
        _db_conn = conn
        _db_path = path
        return _db_conn
    except (OSError, sqlite3.Error):
        return None


def close():
    global _db_conn, _db_path
    if _db_conn is not None:
        with contextlib.suppress(sqlite3.Error):
            _db_conn.close()
    _db_conn = None
    _db_path = None


def log_event(
    category, action, *, session_id=None, rule=None, tool=None, command=None, detail=None
):
    """Insert one row into the events table, honoring POLICY_GUARD_LOG_LEVEL."""
    level = log_level()
    if level == "off":
        return
    if level == "actions" and action == "allowed":
        return
    try:
        conn = _init_db()
        if conn is None:
            return
        conn.execute(
            "INSERT INTO events (ts, session_id, category, rule, action, tool, command, detail) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
                session_id,
                category,
                rule,
                action,
                tool,
                command,
                json.dumps(detail) if detail is not None else None,
            ),
        )
        conn.commit()
    except (sqlite3.Error, OSError, TypeError, ValueError):
        pass


def log_decision(event, rule, action, command=None):
    """Record a block (or, at level ``all``, an allow) in both sinks."""
    if action == "blocked":
        logger.info("BLOCKED: %s | Rule: %s", command or event.tool_name, rule)
    elif log_level() == "all":
        logger.info("ALLOWED: %s", command or event.tool_name)
    log_event(
        "policy",
        action,
        session_id=event.session_id,
        rule=rule,
        tool=event.tool_name,
        command=command,
    )


def omit_long_fields(tool_name, tool_input):
    """Plain-dict copy of ``tool_input`` without the bulky text fields."""
    if hasattr(tool_input, "model_dump"):
        data = tool_input.model_dump(by_alias=True, exclude_none=True)
    elif isinstance(tool_input, dict):
        data = dict(tool_input)
    else:
        return tool_input
    for key in _LONG_FIELDS.get(tool_name, ()):
        data.pop(key, None)
    return data


def record_tool_use(event):
    """Write one ``tool``/``used`` audit record for an allowed tool call."""
    detail = {"input": omit_long_fields(event.tool_name, event.tool_input)}
    if event.transcript_path:
        detail["transcript_path"] = event.transcript_path
    logger.info(
        "Session: %s, Tool: %s, Input: %s",
        event.session_id,
        event.tool_name,
        json.dumps(detail["input"], default=str),
    )
    log_event("tool", "used", session_id=event.session_id, tool=event.tool_name, detail=detail)
