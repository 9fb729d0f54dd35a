from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from shopchat.core.exceptions import CatalogValidationError, DuplicateEntryError, EntryNotFoundError
from shopchat.db.base import Base
from shopchat.db.models import CatalogEntryRecord
from shopchat.db.session import get_session_factory, session_scope
from shopchat.models.catalog import CatalogEntry

logger = logging.getLogger("shopchat.catalog_store")

_ENTRY_FIELDS = ("title", "description", "price", "currency", "sizes", "colors", "stock", "url", "tags")


def record_to_entry(record: CatalogEntryRecord) -> CatalogEntry:
    return CatalogEntry(
        externalId=record.external_id,
        title=record.title,
        description=record.description,
        price=record.price,
        currency=record.currency,
        sizes=list(record.sizes or []),
        colors=list(record.colors or []),
        stock=record.stock,
        url=record.url,
        tags=list(record.tags or []),
    )


def _apply(record: CatalogEntryRecord, entry: CatalogEntry) -> None:
    for name in _ENTRY_FIELDS:
        setattr(record, name, getattr(entry, name))
    record.searchable = entry.searchable


class SqlCatalogStore:
    """Synchronous SQLAlchemy store for catalog entries.

    Deletes are soft: rows keep their ``external_id`` but disappear from every
    read. Ingesting a soft-deleted id again revives the row in place.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._schema_ready = False

    def _session(self):
        if not self._schema_ready:
            Base.metadata.create_all(self._session_factory.kw["bind"])
            self._schema_ready = True
        return session_scope(self._session_factory)

    @staticmethod
    def _active(session: Session, external_id: str) -> CatalogEntryRecord | None:
        stmt = select(CatalogEntryRecord).where(
            CatalogEntryRecord.external_id == external_id,
            CatalogEntryRecord.is_deleted.is_(False),
        )
        return session.execute(stmt).scalar_one_or_none()

    def create_many(self, entries: Iterable[CatalogEntry]) -> List[CatalogEntry]:
        created: list[CatalogEntry] = []
        try:
            with self._session() as session:
                for entry in entries:
                    stmt = select(CatalogEntryRecord).where(CatalogEntryRecord.external_id == entry.externalId)
                    record = session.execute(stmt).scalar_one_or_none()
                    if record is not None and not record.is_deleted:
                        raise DuplicateEntryError(
                            "Catalog entry already exists.", details={"externalIds": [entry.externalId]}
                        )
                    if record is None:
                        record = CatalogEntryRecord(external_id=entry.externalId)
                        session.add(record)
                    else:
                        record.is_deleted = False
                        record.deleted_at = None
                    _apply(record, entry)
                    created.append(entry)
        except IntegrityError as exc:
            raise DuplicateEntryError("Catalog entry already exists.") from exc
        return created

    def create(self, entry: CatalogEntry) -> CatalogEntry:
        return self.create_many([entry])[0]

    def find_by_id(self, external_id: str) -> CatalogEntry | None:
        with self._session() as session:
            record = self._active(session, external_id)
            return record_to_entry(record) if record is not None else None

    def find_by_ids(self, external_ids: Iterable[str]) -> List[CatalogEntry]:
        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return []
        with self._session() as session:
            stmt = select(CatalogEntryRecord).where(
                CatalogEntryRecord.external_id.in_(ids),
                CatalogEntryRecord.is_deleted.is_(False),
            )
            records = {record.external_id: record for record in session.execute(stmt).scalars()}
            return [record_to_entry(records[external_id]) for external_id in ids if external_id in records]

    def update(self, external_id: str, changes: Mapping[str, Any]) -> CatalogEntry:
        with self._session() as session:
            record = self._active(session, external_id)
            if record is None:
                raise EntryNotFoundError("Catalog entry not found.", details={"externalId": external_id})
            merged = record_to_entry(record).model_dump()
            merged.update(changes)
            try:
                entry = CatalogEntry.model_validate(merged)
            except ValidationError as exc:
                raise CatalogValidationError(
                    "Invalid catalog entry update.", details={"errors": exc.errors(include_url=False, include_context=False)}
                ) from exc
            _apply(record, entry)
            return entry

    def soft_delete(self, external_id: str) -> None:
        with self._session() as session:
            record = self._active(session, external_id)
            if record is None:
                raise EntryNotFoundError("Catalog entry not found.", details={"externalId": external_id})
            record.is_deleted = True
            record.deleted_at = datetime.now(timezone.utc)
        logger.info("catalog_store.soft_delete", extra={"externalId": external_id})

    def soft_delete_many(self, external_ids: Iterable[str]) -> int:
        """Soft delete every active id in ``external_ids``; missing ids are skipped."""

        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return 0
        deleted_at = datetime.now(timezone.utc)
        with self._session() as session:
            stmt = select(CatalogEntryRecord).where(
                CatalogEntryRecord.external_id.in_(ids),
                CatalogEntryRecord.is_deleted.is_(False),
            )
            records = list(session.execute(stmt).scalars())
            for record in records:
                record.is_deleted = True
                record.deleted_at = deleted_at
        logger.info("catalog_store.soft_delete_many", extra={"externalIds": ids, "deleted": len(records)})
        return len(records)

    def list_active(self, limit: int, offset: int = 0) -> List[CatalogEntry]:
        with self._session() as session:
            stmt = (
                select(CatalogEntryRecord)
                .where(CatalogEntryRecord.is_deleted.is_(False))
                .order_by(CatalogEntryRecord.id)
                .limit(limit)
                .offset(offset)
            )
            return [record_to_entry(record) for record in session.execute(stmt).scalars()]

    def count_active(self) -> int:
        with self._session() as session:
            stmt = select(func.count()).select_from(CatalogEntryRecord).where(
                CatalogEntryRecord.is_deleted.is_(False)
            )
            return int(session.execute(stmt).scalar_one())
