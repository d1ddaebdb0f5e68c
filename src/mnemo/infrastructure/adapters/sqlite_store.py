"""
SQLite Store — Infrastructure adapter for a local SQLite database.

Implements every storage port against one database file. Timestamps are
stored as naive UTC ISO strings so they sort lexically; card writes are
last-write-wins ``UPDATE ... WHERE id = ?``.
"""

import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mnemo.domain.errors import InvalidInput, PersistenceError
from mnemo.domain.models import (
    CardSchedulingState,
    CardState,
    QuotaUsage,
    Rating,
    ReviewLogEntry,
    SchedulerParameters,
)
from mnemo.domain.ports import CardRepository, DeckSettingsRepository, ReviewLogRepository

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL,
    state INTEGER NOT NULL DEFAULT 0,
    stability REAL NOT NULL DEFAULT 0,
    difficulty REAL NOT NULL DEFAULT 0,
    elapsed_days REAL NOT NULL DEFAULT 0,
    scheduled_days REAL NOT NULL DEFAULT 0,
    reps INTEGER NOT NULL DEFAULT 0,
    lapses INTEGER NOT NULL DEFAULT 0,
    due TEXT NOT NULL,
    last_review TEXT,
    content TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_cards_deck_due ON cards (deck_id, due);

CREATE TABLE IF NOT EXISTS review_logs (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL,
    deck_id TEXT NOT NULL,
    user_id TEXT,
    rating TEXT NOT NULL,
    state INTEGER NOT NULL,
    previous_state INTEGER NOT NULL,
    due TEXT NOT NULL,
    stability REAL NOT NULL,
    difficulty REAL NOT NULL,
    elapsed_days REAL NOT NULL,
    last_elapsed_days REAL NOT NULL,
    scheduled_days REAL NOT NULL,
    review_time TEXT NOT NULL,
    review_duration_ms INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_logs_user_time ON review_logs (user_id, review_time);
CREATE INDEX IF NOT EXISTS idx_logs_deck_time ON review_logs (deck_id, review_time);

CREATE TABLE IF NOT EXISTS deck_settings (
    deck_id TEXT PRIMARY KEY,
    settings TEXT NOT NULL
);
"""

CARD_COLUMNS = (
    "state",
    "stability",
    "difficulty",
    "elapsed_days",
    "scheduled_days",
    "reps",
    "lapses",
    "due",
    "last_review",
)


def to_db_time(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds")


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_db_time(value)
    if isinstance(value, CardState):
        return int(value)
    return value


class SqliteStore(CardRepository, ReviewLogRepository, DeckSettingsRepository):
    """
    Stores cards, review logs and deck settings in a SQLite file.

    Deck settings are kept as the JSON document the surrounding application
    writes (FSRS values under an ``fsrs`` key, limits at the top level).
    """

    def __init__(self, db_path: Path, default_parameters: SchedulerParameters | None = None):
        self.db_path = Path(db_path)
        self.default_parameters = default_parameters or SchedulerParameters()
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.row_factory = sqlite3.Row
                with conn:
                    yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite error on {self.db_path}: {e}") from e

    def _ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    # ---------- setup helpers ----------

    def add_card(self, card: CardSchedulingState) -> None:
        """Insert or replace a card row."""
        fields = card.scheduling_fields()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cards (id, deck_id, state, stability, difficulty, "
                "elapsed_days, scheduled_days, reps, lapses, due, last_review, content) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    card.id,
                    card.deck_id,
                    *(_to_db_value(fields[col]) for col in CARD_COLUMNS),
                    json.dumps(dict(card.content), default=str),
                ),
            )

    def save_deck_settings(self, deck_id: str, settings: Mapping[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO deck_settings (deck_id, settings) VALUES (?, ?)",
                (deck_id, json.dumps(dict(settings))),
            )

    # ---------- CardRepository ----------

    async def fetch_cards_for_deck(
        self, deck_id: str, filters: Mapping[str, Any] | None = None
    ) -> list[CardSchedulingState]:
        query = "SELECT * FROM cards WHERE deck_id = ?"
        args: list[Any] = [deck_id]
        for key, value in (filters or {}).items():
            if key != "id" and key not in CARD_COLUMNS:
                raise InvalidInput(f"Unsupported card filter: {key!r}")
            query += f" AND {key} = ?"
            args.append(_to_db_value(value))
        query += " ORDER BY due ASC, id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, args).fetchall()

        cards = []
        for row in rows:
            record = dict(row)
            content = json.loads(record.pop("content") or "{}")
            cards.append(CardSchedulingState.from_record({**content, **record}))
        return cards

    async def persist_card_update(self, card_id: str, fields: Mapping[str, Any]) -> None:
        columns = [col for col in CARD_COLUMNS if col in fields]
        if not columns:
            return
        assignments = ", ".join(f"{col} = ?" for col in columns)
        args = [_to_db_value(fields[col]) for col in columns] + [card_id]

        with self._connect() as conn:
            cursor = conn.execute(f"UPDATE cards SET {assignments} WHERE id = ?", args)
            if cursor.rowcount == 0:
                raise PersistenceError(f"Unknown card {card_id!r}")

    # ---------- ReviewLogRepository ----------

    async def append_review_log(self, entry: ReviewLogEntry) -> None:
        record = {k: _to_db_value(v) for k, v in entry.to_record().items()}
        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR IGNORE INTO review_logs ({columns}) VALUES ({placeholders})",
                list(record.values()),
            )

    async def count_today_activity(
        self, deck_id: str, user_id: str | None, day_start: datetime
    ) -> QuotaUsage:
        query = (
            "SELECT "
            "COALESCE(SUM(CASE WHEN previous_state = ? THEN 1 ELSE 0 END), 0) AS new_cards, "
            "COALESCE(SUM(CASE WHEN previous_state = ? THEN 1 ELSE 0 END), 0) AS reviews "
            "FROM review_logs WHERE deck_id = ? AND user_id IS ? "
            "AND review_time >= ? AND rating != ?"
        )
        args = (
            int(CardState.NEW),
            int(CardState.REVIEW),
            deck_id,
            user_id,
            to_db_time(day_start),
            Rating.MANUAL.label,
        )
        with self._connect() as conn:
            row = conn.execute(query, args).fetchone()
        return QuotaUsage(new_cards=int(row["new_cards"]), reviews=int(row["reviews"]))

    async def iter_logs(
        self,
        user_id: str | None,
        start: datetime,
        end: datetime,
        page_size: int = 500,
        deck_id: str | None = None,
    ) -> AsyncIterator[ReviewLogEntry]:
        base = "SELECT * FROM review_logs WHERE user_id IS ? AND review_time >= ? AND review_time < ?"
        base_args: list[Any] = [user_id, to_db_time(start), to_db_time(end)]
        if deck_id is not None:
            base += " AND deck_id = ?"
            base_args.append(deck_id)

        size = max(page_size, 1)
        last: tuple[str, str] | None = None
        while True:
            query = base
            args = list(base_args)
            if last is not None:
                query += " AND (review_time > ? OR (review_time = ? AND id > ?))"
                args += [last[0], last[0], last[1]]
            query += " ORDER BY review_time ASC, id ASC LIMIT ?"
            args.append(size)

            with self._connect() as conn:
                rows = conn.execute(query, args).fetchall()

            for row in rows:
                yield ReviewLogEntry.from_record(dict(row))
            if len(rows) < size:
                return
            last = (rows[-1]["review_time"], rows[-1]["id"])

    # ---------- DeckSettingsRepository ----------

    async def get_scheduler_parameters(self, deck_id: str) -> SchedulerParameters:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT settings FROM deck_settings WHERE deck_id = ?", (deck_id,)
            ).fetchone()
        if row is None:
            return self.default_parameters
        return SchedulerParameters.from_deck_settings(
            json.loads(row["settings"]), defaults=self.default_parameters
        )
