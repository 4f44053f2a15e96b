"""
Board persistence backend (SQLite).

The board is stored as one JSON document per key in a small key/value
table, next to the custom field definitions. There is no version field:
loading back-fills absent fields instead (see schema.from_dict and
BoardStore.from_documents).

Before writing, uploaded file payloads are stripped from attachments at
card, comment and checklist-item level, and data-URL cover images are
dropped, so the stored document stays small.
"""
import copy
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterator

from .schema import CustomFieldDefinition, format_instant
from .store import BoardStore

logger = logging.getLogger(__name__)

BOARD_KEY = "board"
CUSTOM_FIELDS_KEY = "custom-fields"

# Fields an uploaded file keeps once its payload is stripped
_FILE_FIELDS = ("id", "name", "timestamp", "kind")


def _json_default(value: Any) -> Any:
    """Encode values json cannot: datetimes as ISO text, sets as sorted lists."""
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _connect(db_path: str, max_pages: Optional[int] = None) -> sqlite3.Connection:
    """Open a connection in WAL mode, optionally capped at max_pages pages."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    if max_pages:
        conn.execute(f"PRAGMA max_page_count = {int(max_pages)}")
    return conn


# ── Sanitization ─────────────────────────────────────────────────────────────


def sanitize_attachments(attachments: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Reduce file attachments to their metadata; links are kept whole."""
    cleaned = []
    for att in attachments or []:
        if att.get("kind") == "file":
            cleaned.append({k: att.get(k) for k in _FILE_FIELDS})
        else:
            cleaned.append(att)
    return cleaned


def sanitize_board(lists: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Copy of the serialized board with non-durable payloads removed."""
    lists = copy.deepcopy(lists)
    for lst in lists:
        for card in lst.get("cards", []):
            card["attachments"] = sanitize_attachments(card.get("attachments"))
            for comment in card.get("comments", []):
                comment["attachments"] = sanitize_attachments(comment.get("attachments"))
            for checklist in card.get("checklists", []):
                for item in checklist.get("items", []):
                    item["attachments"] = sanitize_attachments(item.get("attachments"))
            cover = card.get("cover") or {}
            if (cover.get("image_ref") or "").startswith("data:image"):
                cover["image_ref"] = None
    return lists


# ── Store ────────────────────────────────────────────────────────────────────


class BoardPersistence:
    """SQLite-backed document store for one board."""

    def __init__(self, db_path: str = None, max_pages: Optional[int] = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "mosaic" / "board.db")
        self.db_path = db_path
        self.max_pages = max_pages
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        conn = _connect(self.db_path, self.max_pages)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_schema(self):
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    # ── Raw documents ────────────────────────────────────────────────────────

    def read(self, key: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute("SELECT value FROM documents WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def write(self, key: str, value: str) -> None:
        """Upsert one document. Raises sqlite3.Error on failure (e.g. database full)."""
        now = datetime.now(timezone.utc).isoformat()
        with self._session() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO documents (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, now))

    def delete(self, key: str) -> None:
        with self._session() as conn:
            conn.execute("DELETE FROM documents WHERE key = ?", (key,))

    def _read_json(self, key: str) -> Any:
        try:
            raw = self.read(key)
        except sqlite3.Error as e:
            logger.error(f"Failed to read {key} from {self.db_path}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Stored {key} document is not valid JSON, ignoring it: {e}")
            return None

    # ── Board ────────────────────────────────────────────────────────────────

    def save_board(self, lists: List[Dict[str, Any]]) -> bool:
        """
        Persist the serialized board after sanitizing it.

        On failure the stored board is cleared and the write retried once;
        if that fails too the save is abandoned. Never raises.
        """
        try:
            payload = json.dumps(sanitize_board(lists), default=_json_default)
        except (TypeError, ValueError) as e:
            logger.error(f"Board is not serializable, not saved: {e}")
            return False

        try:
            self.write(BOARD_KEY, payload)
            return True
        except sqlite3.Error as e:
            logger.warning(f"Could not save board ({e}); clearing stored board and retrying once")

        try:
            self.delete(BOARD_KEY)
            self.write(BOARD_KEY, payload)
            return True
        except sqlite3.Error as e:
            logger.error(f"Retry failed, board not saved: {e}")
            return False

    def load_store(self) -> BoardStore:
        """Rehydrate the board; a missing or unreadable document gives an empty board."""
        raw = self._read_json(BOARD_KEY)
        if not isinstance(raw, list):
            return BoardStore()
        return BoardStore.from_documents(r for r in raw if isinstance(r, dict))

    # ── Custom fields ────────────────────────────────────────────────────────

    def save_custom_fields(self, definitions: List[Dict[str, Any]]) -> bool:
        try:
            self.write(CUSTOM_FIELDS_KEY, json.dumps(definitions))
            return True
        except sqlite3.Error as e:
            logger.error(f"Could not save custom fields: {e}")
            return False

    def load_custom_fields(self) -> List[CustomFieldDefinition]:
        raw = self._read_json(CUSTOM_FIELDS_KEY)
        if not isinstance(raw, list):
            return []
        return [CustomFieldDefinition.from_dict(d) for d in raw if isinstance(d, dict)]

    def clear(self) -> None:
        """Remove the board and custom field documents."""
        try:
            self.delete(BOARD_KEY)
            self.delete(CUSTOM_FIELDS_KEY)
        except sqlite3.Error as e:
            logger.error(f"Could not clear stored board data: {e}")
