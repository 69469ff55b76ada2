"""
File State Store

Durable record of the last synchronized state per path, plus the conflicts
awaiting a resolution directive. Backed by SQLite through SQLAlchemy; every
write is one short transaction scoped to a single path.

Author: CADSync Project
License: MIT
"""

import os
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..providers.base import Location
from ..utils.logger import get_logger
from .exceptions import StateStoreError
from .models import LocationObservation, PendingConflict, SyncState, ordered_locations

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class FileStateRow(Base):
    """Last synced state of one path."""

    __tablename__ = "file_states"

    path: Mapped[str] = mapped_column(String(4096), primary_key=True)
    last_synced_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # SHA-256 hex
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    presence: Mapped[str] = mapped_column(String(32), nullable=False)  # "local,cloud,share"
    size: Mapped[Optional[int]] = mapped_column(Integer)
    modified_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class PendingConflictRow(Base):
    """Conflict awaiting a resolution directive."""

    __tablename__ = "pending_conflicts"

    path: Mapped[str] = mapped_column(String(4096), primary_key=True)
    reason: Mapped[str] = mapped_column(Text, default="")
    last_synced_hash: Mapped[Optional[str]] = mapped_column(String(64))
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    observations: Mapped[list] = mapped_column(JSON, nullable=False)


def _encode_presence(presence: Iterable[Location]) -> str:
    return ",".join(loc.value for loc in ordered_locations(presence))


def _decode_presence(value: str) -> frozenset:
    return frozenset(Location(name) for name in value.split(",") if name)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FileStateStore:
    """
    SQLite-backed state store.

    Any database failure surfaces as ``StateStoreError``; the engine treats
    it as fatal for the run since change baselines are then unknown.
    """

    def __init__(self, db_path: str = ":memory:", echo: bool = False):
        """
        Initialize state store.

        Args:
            db_path: SQLite database file, or ":memory:"
            echo: Log SQL statements
        """
        self.db_path = db_path
        if db_path == ":memory:":
            self._engine = create_engine(
                "sqlite://",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )
        else:
            db_path = os.path.expanduser(db_path)
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            self.db_path = db_path
            self._engine = create_engine(
                f"sqlite:///{db_path}",
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30}
            )

        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _session(self) -> Session:
        if not self._schema_ready:
            with self._schema_lock:
                if not self._schema_ready:
                    try:
                        Base.metadata.create_all(self._engine)
                    except SQLAlchemyError as e:
                        raise StateStoreError(f"State store unavailable ({self.db_path}): {e}") from e
                    self._schema_ready = True
                    logger.debug(f"State store ready: {self.db_path}")
        return self._sessions()

    @staticmethod
    def _to_state(row: FileStateRow) -> SyncState:
        return SyncState(
            path=row.path,
            last_synced_hash=row.last_synced_hash,
            last_synced_at=_as_utc(row.last_synced_at),
            presence=_decode_presence(row.presence),
            size=row.size,
            modified_time=_as_utc(row.modified_time)
        )

    @staticmethod
    def _to_conflict(row: PendingConflictRow) -> PendingConflict:
        return PendingConflict(
            path=row.path,
            observations=tuple(LocationObservation.from_dict(o) for o in row.observations),
            detected_at=_as_utc(row.detected_at),
            last_synced_hash=row.last_synced_hash,
            reason=row.reason or ""
        )

    # ------------------------------------------------------------------
    # File states
    # ------------------------------------------------------------------

    def load_all(self) -> Dict[str, SyncState]:
        """
        Load every known path's state.

        Raises:
            StateStoreError: If the database cannot be read
        """
        try:
            with self._session() as session:
                rows = session.scalars(select(FileStateRow)).all()
                states = {row.path: self._to_state(row) for row in rows}
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read state store: {e}") from e
        except ValueError as e:
            raise StateStoreError(f"State store holds invalid data: {e}") from e
        return states

    def get(self, path: str) -> Optional[SyncState]:
        try:
            with self._session() as session:
                row = session.get(FileStateRow, path)
                return self._to_state(row) if row else None
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read state for {path}: {e}") from e

    def count(self) -> int:
        try:
            with self._session() as session:
                return session.scalar(select(func.count()).select_from(FileStateRow)) or 0
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read state store: {e}") from e

    def upsert(self, state: SyncState):
        """Record ``state`` for its path in one transaction."""
        try:
            with self._session() as session, session.begin():
                session.merge(FileStateRow(
                    path=state.path,
                    last_synced_hash=state.last_synced_hash,
                    last_synced_at=state.last_synced_at,
                    presence=_encode_presence(state.presence),
                    size=state.size,
                    modified_time=state.modified_time
                ))
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot record state for {state.path}: {e}") from e

    def remove(self, path: str):
        """Forget a path (confirmed deleted everywhere)."""
        try:
            with self._session() as session, session.begin():
                session.execute(delete(FileStateRow).where(FileStateRow.path == path))
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot remove state for {path}: {e}") from e

    # ------------------------------------------------------------------
    # Pending conflicts
    # ------------------------------------------------------------------

    def replace_conflicts(self, conflicts: Iterable[PendingConflict]):
        """Replace the pending conflict set with the one found by the latest run."""
        try:
            with self._session() as session, session.begin():
                session.execute(delete(PendingConflictRow))
                for conflict in conflicts:
                    session.add(PendingConflictRow(
                        path=conflict.path,
                        reason=conflict.reason,
                        last_synced_hash=conflict.last_synced_hash,
                        detected_at=conflict.detected_at,
                        observations=[o.to_dict() for o in conflict.observations]
                    ))
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot record pending conflicts: {e}") from e

    def list_conflicts(self) -> List[PendingConflict]:
        try:
            with self._session() as session:
                rows = session.scalars(select(PendingConflictRow).order_by(PendingConflictRow.path)).all()
                return [self._to_conflict(row) for row in rows]
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read pending conflicts: {e}") from e

    def get_conflict(self, path: str) -> Optional[PendingConflict]:
        try:
            with self._session() as session:
                row = session.get(PendingConflictRow, path)
                return self._to_conflict(row) if row else None
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read pending conflict for {path}: {e}") from e

    def remove_conflict(self, path: str):
        try:
            with self._session() as session, session.begin():
                session.execute(delete(PendingConflictRow).where(PendingConflictRow.path == path))
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot remove pending conflict for {path}: {e}") from e

    def close(self):
        """Release database connections."""
        self._engine.dispose()
