"""Durable snipe persistence in an embedded SQLite database.

One table, one row per snipe id. The engine is created lazily on first access
and kept for the life of the process; every mutating call commits before it
returns, so a crash right after a successful call cannot lose the write.
SQLite allows a single writer, so all access goes through one lock.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

import orjson
from sqlalchemy import Column, Integer, String, Text, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from tablesnipe.models import (
    Platform,
    RestaurantRef,
    Snipe,
    SnipeRequest,
    SnipeStatus,
    ensure_utc,
)

logger = logging.getLogger(__name__)

SNIPE_ID_RE = re.compile(r"^snipe-[0-9a-f]{12}$")


class Base(DeclarativeBase):
    pass


class SnipeRow(Base):
    __tablename__ = "snipes"

    id = Column(String(32), primary_key=True)
    restaurant_id = Column(String(64), nullable=False)
    platform = Column(String(16), nullable=False)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    party_size = Column(Integer, nullable=False)
    preferred_times = Column(Text, nullable=False)  # JSON list, priority order
    release_time = Column(String(32), nullable=False, index=True)  # UTC ISO 8601
    status = Column(String(16), nullable=False, default=SnipeStatus.PENDING.value, index=True)
    created_at = Column(String(32), nullable=False)
    result = Column(Text, nullable=True)


def new_snipe_id() -> str:
    return f"snipe-{uuid.uuid4().hex[:12]}"


def _format_ts(value: datetime) -> str:
    # Fixed width so ORDER BY on the text column is chronological
    return ensure_utc(value).isoformat(timespec="microseconds")


def _to_snipe(row: SnipeRow) -> Snipe:
    return Snipe(
        id=row.id,
        restaurant=RestaurantRef(
            platform=Platform(row.platform), restaurant_id=row.restaurant_id
        ),
        date=date.fromisoformat(row.date),
        party_size=row.party_size,
        preferred_times=orjson.loads(row.preferred_times),
        release_time=datetime.fromisoformat(row.release_time),
        status=SnipeStatus(row.status),
        created_at=datetime.fromisoformat(row.created_at),
        result=row.result,
    )


class SnipeStore:
    """CRUD over the snipes table.

    Validation is the caller's job; ``update_status`` does not enforce the
    status state machine beyond its optional ``expected`` guard.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None
        self._lock = threading.RLock()

    def _sessions(self) -> sessionmaker:
        if self._session_factory is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"check_same_thread": False},
            )
            Base.metadata.create_all(self._engine)
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            logger.info("Snipe store opened at %s", self.db_path)
        return self._session_factory

    def create(self, request: SnipeRequest) -> Snipe:
        """Persist a new pending snipe and return it."""
        snipe = Snipe(
            id=new_snipe_id(),
            restaurant=request.restaurant,
            date=request.date,
            party_size=request.party_size,
            preferred_times=list(request.preferred_times),
            release_time=ensure_utc(request.release_time),
            status=SnipeStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        row = SnipeRow(
            id=snipe.id,
            restaurant_id=snipe.restaurant.restaurant_id,
            platform=snipe.platform.value,
            date=snipe.date.isoformat(),
            party_size=snipe.party_size,
            preferred_times=orjson.dumps(snipe.preferred_times).decode(),
            release_time=_format_ts(snipe.release_time),
            status=snipe.status.value,
            created_at=_format_ts(snipe.created_at),
        )
        with self._lock, self._sessions().begin() as session:
            session.add(row)
        logger.info("Created snipe %s (%s %s)", snipe.id, snipe.platform.value, snipe.date)
        return snipe

    def get(self, snipe_id: str) -> Snipe | None:
        with self._lock, self._sessions()() as session:
            row = session.get(SnipeRow, snipe_id)
            return _to_snipe(row) if row else None

    def list_snipes(self, status: SnipeStatus | None = None) -> list[Snipe]:
        """All snipes, most imminent release first."""
        stmt = select(SnipeRow)
        if status is not None:
            stmt = stmt.where(SnipeRow.status == SnipeStatus(status).value)
        stmt = stmt.order_by(SnipeRow.release_time.asc())
        with self._lock, self._sessions()() as session:
            return [_to_snipe(row) for row in session.scalars(stmt)]

    def pending(self) -> list[Snipe]:
        return self.list_snipes(SnipeStatus.PENDING)

    def update_status(
        self,
        snipe_id: str,
        status: SnipeStatus,
        result: str | None = None,
        expected: SnipeStatus | None = None,
    ) -> bool:
        """
        Persist a status change. Returns False if nothing was written.

        With ``expected``, the write is a compare-and-set: it only lands while
        the row is still in that status, so a snipe another writer already
        moved on (cancelled, failed at startup) is left alone.
        """
        stmt = (
            update(SnipeRow)
            .where(SnipeRow.id == snipe_id)
            .values(status=SnipeStatus(status).value, result=result)
        )
        if expected is not None:
            stmt = stmt.where(SnipeRow.status == SnipeStatus(expected).value)
        with self._lock, self._sessions().begin() as session:
            changed = session.execute(stmt).rowcount > 0
        if changed:
            logger.debug("Snipe %s -> %s", snipe_id, SnipeStatus(status).value)
        elif expected is not None:
            logger.info(
                "Snipe %s not moved to %s: no longer %s",
                snipe_id, SnipeStatus(status).value, SnipeStatus(expected).value,
            )
        else:
            logger.warning("Status update for unknown snipe %s", snipe_id)
        return changed

    def delete(self, snipe_id: str) -> bool:
        stmt = delete(SnipeRow).where(SnipeRow.id == snipe_id)
        with self._lock, self._sessions().begin() as session:
            return session.execute(stmt).rowcount > 0

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None
