from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import delete, select, tuple_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Item

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 25

_KEY_COLUMNS = {"PK": "pk", "SK": "sk", "GSI1PK": "gsi1pk", "GSI1SK": "gsi1sk"}


class StorageError(RuntimeError):
    pass


class PartialWriteFailure(StorageError):
    def __init__(self, message: str, written: int) -> None:
        super().__init__(message)
        self.written = written


def encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: encode_value(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(inner) for inner in value]
    return value


def _split(record: dict[str, Any]) -> tuple[dict[str, Optional[str]], dict[str, Any]]:
    keys: dict[str, Optional[str]] = {}
    attributes: dict[str, Any] = {}
    for name, value in record.items():
        if name in _KEY_COLUMNS:
            keys[_KEY_COLUMNS[name]] = value
        else:
            attributes[name] = encode_value(value)
    return keys, attributes


def _to_record(row: Item) -> dict[str, Any]:
    record = dict(row.attributes or {})
    record["PK"] = row.pk
    record["SK"] = row.sk
    if row.gsi1pk is not None:
        record["GSI1PK"] = row.gsi1pk
    if row.gsi1sk is not None:
        record["GSI1SK"] = row.gsi1sk
    return record


def _chunks(records: list, size: int) -> Iterator[list]:
    for start in range(0, len(records), size):
        yield records[start : start + size]


class ItemStore:
    """Partition/sort keyed item store with one secondary index."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(f"storage_error: action={action} error={exc!r}")
            raise StorageError(f"Failed to {action}") from exc

    def get(self, pk: str, sk: str) -> Optional[dict[str, Any]]:
        with self._guard("read item"):
            row = self.session.get(Item, (pk, sk))
            return _to_record(row) if row else None

    def query(self, pk: str, *, sk_prefix: Optional[str] = None) -> list[dict[str, Any]]:
        stmt = select(Item).where(Item.pk == pk)
        if sk_prefix:
            stmt = stmt.where(Item.sk.startswith(sk_prefix, autoescape=True))
        stmt = stmt.order_by(Item.sk)
        with self._guard("query items"):
            return [_to_record(row) for row in self.session.scalars(stmt)]

    def query_index(
        self,
        gsi1pk: str,
        *,
        sk_prefix: Optional[str] = None,
        sk_lt: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        stmt = select(Item).where(Item.gsi1pk == gsi1pk)
        if sk_prefix:
            stmt = stmt.where(Item.gsi1sk.startswith(sk_prefix, autoescape=True))
        if sk_lt is not None:
            stmt = stmt.where(Item.gsi1sk < sk_lt)
        stmt = stmt.order_by(Item.gsi1sk)
        with self._guard("query index"):
            return [_to_record(row) for row in self.session.scalars(stmt)]

    def scan_filtered(
        self,
        pk_prefix: str,
        attribute: Optional[str] = None,
        value: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        stmt = select(Item).where(Item.pk.startswith(pk_prefix, autoescape=True))
        if attribute is not None:
            stmt = stmt.where(Item.attributes[attribute].as_string() == value)
        stmt = stmt.order_by(Item.pk, Item.sk)
        with self._guard("scan items"):
            return [_to_record(row) for row in self.session.scalars(stmt)]

    def put(self, record: dict[str, Any]) -> None:
        keys, attributes = _split(record)
        with self._guard("put item"):
            row = self.session.get(Item, (keys["pk"], keys["sk"]))
            if row is None:
                self.session.add(Item(attributes=attributes, **keys))
            else:
                row.gsi1pk = keys.get("gsi1pk")
                row.gsi1sk = keys.get("gsi1sk")
                row.attributes = attributes
            self.session.commit()

    def batch_put(
        self,
        records: Iterable[dict[str, Any]],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        if_not_exists: bool = True,
    ) -> int:
        """Write ``records`` in chunks, committing each chunk on its own.

        With ``if_not_exists`` an item whose key is already present is
        dropped rather than overwritten. Returns the number of items written.
        """
        records = list(records)
        written = 0
        for index, chunk in enumerate(_chunks(records, chunk_size)):
            try:
                written += self._write_chunk(chunk, if_not_exists=if_not_exists)
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.warning(
                    f"batch_put_failed: chunk={index} written={written} error={exc!r}"
                )
                if written:
                    raise PartialWriteFailure(
                        f"Batch write failed after {written} items", written
                    ) from exc
                raise StorageError("Failed to write items") from exc
        return written

    def _write_chunk(self, chunk: list[dict[str, Any]], *, if_not_exists: bool) -> int:
        attempts = 2 if if_not_exists else 1
        for attempt in range(attempts):
            try:
                count = self._stage_chunk(chunk, if_not_exists=if_not_exists)
                self.session.commit()
                return count
            except IntegrityError:
                # A concurrent writer created some of these keys first.
                self.session.rollback()
                if attempt == attempts - 1:
                    raise
        return 0

    def _stage_chunk(self, chunk: list[dict[str, Any]], *, if_not_exists: bool) -> int:
        split = [_split(record) for record in chunk]
        wanted = [(keys["pk"], keys["sk"]) for keys, _ in split]
        existing = {
            (row.pk, row.sk)
            for row in self.session.execute(
                select(Item.pk, Item.sk).where(tuple_(Item.pk, Item.sk).in_(wanted))
            )
        }
        count = 0
        for keys, attributes in split:
            key = (keys["pk"], keys["sk"])
            if key in existing:
                if if_not_exists:
                    continue
                row = self.session.get(Item, key)
                row.gsi1pk = keys.get("gsi1pk")
                row.gsi1sk = keys.get("gsi1sk")
                row.attributes = attributes
            else:
                self.session.add(Item(attributes=attributes, **keys))
                existing.add(key)
            count += 1
        return count

    def update(self, pk: str, sk: str, patch: dict[str, Any]) -> Optional[dict[str, Any]]:
        keys, attributes = _split(patch)
        with self._guard("update item"):
            row = self.session.get(Item, (pk, sk))
            if row is None:
                return None
            if "gsi1pk" in keys:
                row.gsi1pk = keys["gsi1pk"]
            if "gsi1sk" in keys:
                row.gsi1sk = keys["gsi1sk"]
            if attributes:
                row.attributes = {**(row.attributes or {}), **attributes}
            self.session.commit()
            return _to_record(row)

    def delete(self, pk: str, sk: str) -> bool:
        with self._guard("delete item"):
            result = self.session.execute(
                delete(Item).where(Item.pk == pk, Item.sk == sk)
            )
            self.session.commit()
            return bool(result.rowcount)

    def batch_delete(
        self, keys: Iterable[tuple[str, str]], *, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> int:
        keys = list(keys)
        deleted = 0
        for chunk in _chunks(keys, chunk_size):
            with self._guard("delete items"):
                result = self.session.execute(
                    delete(Item).where(tuple_(Item.pk, Item.sk).in_(chunk))
                )
                self.session.commit()
                deleted += result.rowcount or 0
        return deleted
