# portfolio_engine/services/snapshot_repository.py
"""
Persistence for the price / FX snapshot caches.

Two tables back the cache (see models.py):
    PriceSnapshot     exact requested date, keyed by (kind, key, market, date)
    YearEndSnapshot   Dec-31 of a completed year, keyed by (kind, key, market, year)

Write semantics:
    insert_*          INSERT ... ON CONFLICT DO NOTHING. Automatic fetches use
                      this, so a concurrent writer that got there first wins
                      and nothing is ever overwritten.
    upsert_manual_*   INSERT ... ON CONFLICT DO UPDATE. Only used for manual
                      overrides, after the caller has checked that replacing
                      the existing row is allowed.

No locks are taken. Two processes fetching the same key at the same time
both call the provider; the second insert is silently ignored.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portfolio_engine.models import PriceSnapshot, SnapshotKind, YearEndSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotValues:
    """
    Payload written into either snapshot table.

    A negative ("not available") entry has value=None and is_not_available=True.
    """

    value: Decimal | None
    currency: str | None
    actual_date: date | None
    source: str | None
    is_not_available: bool = False

    @classmethod
    def not_available(cls, currency: str | None = None) -> "SnapshotValues":
        return cls(value=None, currency=currency, actual_date=None, source=None, is_not_available=True)

    def as_columns(self) -> dict:
        return {
            "value": self.value,
            "currency": self.currency,
            "actual_date": self.actual_date,
            "source": self.source,
            "is_not_available": self.is_not_available,
            "fetched_at": datetime.now(timezone.utc),
        }


class SnapshotRepository(Protocol):
    """Interface required by PriceResolutionService."""

    def get_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
    ) -> PriceSnapshot | None:
        ...

    def insert_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
            values: SnapshotValues,
    ) -> bool:
        ...

    def upsert_manual_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
            values: SnapshotValues,
    ) -> None:
        ...

    def get_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
    ) -> YearEndSnapshot | None:
        ...

    def insert_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
            values: SnapshotValues,
    ) -> bool:
        ...

    def upsert_manual_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
            values: SnapshotValues,
    ) -> None:
        ...


class SqlSnapshotRepository:
    """
    SQLAlchemy implementation of SnapshotRepository.

    Uses the PostgreSQL or SQLite ON CONFLICT dialect depending on the bound
    engine; any other backend falls back to a savepoint + IntegrityError.

    Args:
        db: Session used for reads and writes. Each write commits.
    """

    _PRICE_KEY = ("kind", "key", "market", "snapshot_date")
    _YEAR_END_KEY = ("kind", "key", "market", "year")

    def __init__(self, db: Session) -> None:
        self._db = db

    # =========================================================================
    # EXACT-DATE SNAPSHOTS
    # =========================================================================

    def get_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
    ) -> PriceSnapshot | None:
        stmt = select(PriceSnapshot).where(
            PriceSnapshot.kind == kind,
            PriceSnapshot.key == key,
            PriceSnapshot.market == market,
            PriceSnapshot.snapshot_date == snapshot_date,
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def insert_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
            values: SnapshotValues,
    ) -> bool:
        """
        Insert-or-ignore a snapshot.

        Returns:
            True if a row was written, False if one already existed
        """
        row = {"kind": kind, "key": key, "market": market, "snapshot_date": snapshot_date, **values.as_columns()}
        return self._insert_ignore(PriceSnapshot, row, "uq_price_snapshot", self._PRICE_KEY)

    def upsert_manual_price_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            snapshot_date: date,
            values: SnapshotValues,
    ) -> None:
        row = {"kind": kind, "key": key, "market": market, "snapshot_date": snapshot_date, **values.as_columns()}
        self._upsert(PriceSnapshot, row, "uq_price_snapshot", self._PRICE_KEY)

    # =========================================================================
    # YEAR-END SNAPSHOTS
    # =========================================================================

    def get_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
    ) -> YearEndSnapshot | None:
        stmt = select(YearEndSnapshot).where(
            YearEndSnapshot.kind == kind,
            YearEndSnapshot.key == key,
            YearEndSnapshot.market == market,
            YearEndSnapshot.year == year,
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def insert_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
            values: SnapshotValues,
    ) -> bool:
        row = {"kind": kind, "key": key, "market": market, "year": year, **values.as_columns()}
        return self._insert_ignore(YearEndSnapshot, row, "uq_year_end_snapshot", self._YEAR_END_KEY)

    def upsert_manual_year_end_snapshot(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
            values: SnapshotValues,
    ) -> None:
        row = {"kind": kind, "key": key, "market": market, "year": year, **values.as_columns()}
        self._upsert(YearEndSnapshot, row, "uq_year_end_snapshot", self._YEAR_END_KEY)

    # =========================================================================
    # DIALECT HELPERS
    # =========================================================================

    def _dialect(self) -> str:
        return self._db.get_bind().dialect.name

    def _insert_ignore(self, model, row: dict, constraint: str, index_elements: tuple[str, ...]) -> bool:
        dialect = self._dialect()

        if dialect == "postgresql":
            stmt = pg_insert(model).values(**row).on_conflict_do_nothing(constraint=constraint)
        elif dialect == "sqlite":
            stmt = sqlite_insert(model).values(**row).on_conflict_do_nothing(index_elements=list(index_elements))
        else:
            return self._insert_with_savepoint(model, row)

        result = self._db.execute(stmt)
        self._db.commit()
        return result.rowcount > 0

    def _insert_with_savepoint(self, model, row: dict) -> bool:
        try:
            with self._db.begin_nested():
                self._db.add(model(**row))
        except IntegrityError:
            logger.debug(f"{model.__tablename__}: row already present, insert ignored")
            return False
        self._db.commit()
        return True

    def _upsert(self, model, row: dict, constraint: str, index_elements: tuple[str, ...]) -> None:
        dialect = self._dialect()
        update_columns = {k: v for k, v in row.items() if k not in index_elements}

        if dialect == "postgresql":
            stmt = pg_insert(model).values(**row)
            stmt = stmt.on_conflict_do_update(constraint=constraint, set_=update_columns)
        elif dialect == "sqlite":
            stmt = sqlite_insert(model).values(**row)
            stmt = stmt.on_conflict_do_update(index_elements=list(index_elements), set_=update_columns)
        else:
            existing = self._db.execute(
                select(model).filter_by(**{k: row[k] for k in index_elements})
            ).scalar_one_or_none()
            if existing is None:
                self._db.add(model(**row))
            else:
                for column, value in update_columns.items():
                    setattr(existing, column, value)
            self._db.commit()
            return

        self._db.execute(stmt)
        self._db.commit()
