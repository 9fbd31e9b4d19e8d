"""Document store contract used by the recurring engine.

The engine only ever needs four calls (create, point get, partial update,
filtered list) plus delete for template management. Every call is an
independent round-trip; nothing here spans more than one document.
"""

from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import SessionLocal, session_scope
from models import DocumentRow


class StoreError(Exception):
    """Base exception for document store operations."""


class NotFound(StoreError):
    """Document does not exist in the collection."""


class AlreadyExists(StoreError):
    """A document with the requested id already exists."""


@dataclass
class Document:
    collection: str
    id: str
    data: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


def new_document_id() -> str:
    return uuid.uuid4().hex


def _matches(data: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(data.get(key) == value for key, value in filters.items())


def _sort_documents(
    documents: list[Document], ordering: Optional[Sequence[str]]
) -> list[Document]:
    # Stable sorts applied last key first give multi-key ordering.
    for key in reversed(list(ordering or [])):
        descending = key.startswith("-")
        name = key.lstrip("-")
        present = [d for d in documents if d.data.get(name) is not None]
        missing = [d for d in documents if d.data.get(name) is None]
        present.sort(key=lambda d: d.data[name], reverse=descending)
        documents = present + missing
    return documents


class DocumentStore(ABC):
    @abstractmethod
    def create_document(
        self,
        collection: str,
        fields: Mapping[str, Any],
        document_id: Optional[str] = None,
    ) -> Document:
        """Create a document; raises AlreadyExists if ``document_id`` is taken."""

    @abstractmethod
    def get_document(self, collection: str, document_id: str) -> Document:
        """Fetch one document; raises NotFound."""

    @abstractmethod
    def update_document(
        self, collection: str, document_id: str, partial_fields: Mapping[str, Any]
    ) -> Document:
        """Merge ``partial_fields`` into the stored document; raises NotFound."""

    @abstractmethod
    def list_documents(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        ordering: Optional[Sequence[str]] = None,
    ) -> list[Document]:
        """Equality filters; ordering by field names, ``-name`` for descending."""

    @abstractmethod
    def delete_document(self, collection: str, document_id: str) -> None:
        """Remove one document; raises NotFound."""


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._mutex = threading.Lock()

    def _bucket(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    def create_document(self, collection, fields, document_id=None):
        document_id = document_id or new_document_id()
        with self._mutex:
            bucket = self._bucket(collection)
            if document_id in bucket:
                raise AlreadyExists(f"{collection}/{document_id} already exists")
            doc = Document(collection, document_id, copy.deepcopy(dict(fields)))
            bucket[document_id] = doc
            return copy.deepcopy(doc)

    def get_document(self, collection, document_id):
        with self._mutex:
            doc = self._bucket(collection).get(document_id)
            if doc is None:
                raise NotFound(f"{collection}/{document_id} not found")
            return copy.deepcopy(doc)

    def update_document(self, collection, document_id, partial_fields):
        with self._mutex:
            doc = self._bucket(collection).get(document_id)
            if doc is None:
                raise NotFound(f"{collection}/{document_id} not found")
            doc.data.update(copy.deepcopy(dict(partial_fields)))
            doc.updated_at = datetime.utcnow()
            return copy.deepcopy(doc)

    def list_documents(self, collection, filters=None, ordering=None):
        with self._mutex:
            docs = [
                copy.deepcopy(doc)
                for doc in self._bucket(collection).values()
                if _matches(doc.data, filters)
            ]
        return _sort_documents(docs, ordering)

    def delete_document(self, collection, document_id):
        with self._mutex:
            if self._bucket(collection).pop(document_id, None) is None:
                raise NotFound(f"{collection}/{document_id} not found")


@contextmanager
def _translate_errors(
    action: str, collection: str, document_id: str = ""
) -> Iterator[None]:
    target = f"{collection}/{document_id}" if document_id else collection
    try:
        yield
    except IntegrityError as exc:
        if action == "create":
            raise AlreadyExists(f"{target} already exists") from exc
        raise StoreError(f"{action} {target} failed: {exc}") from exc
    except SQLAlchemyError as exc:
        raise StoreError(f"{action} {target} failed: {exc}") from exc


class SQLDocumentStore(DocumentStore):
    """Documents kept as JSON rows in a single ``documents`` table.

    Each call opens its own session, so concurrent callers on different
    threads never share one. ``user_id`` is mirrored into an indexed column
    and filtered in SQL; every other filter is applied in Python. Database
    failures surface as StoreError.
    """

    def __init__(self, factory: sessionmaker = SessionLocal) -> None:
        self.factory = factory

    @staticmethod
    def _to_document(row: DocumentRow) -> Document:
        return Document(
            collection=row.collection,
            id=row.id,
            data=dict(row.data or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_document(self, collection, fields, document_id=None):
        document_id = document_id or new_document_id()
        data = dict(fields)
        with _translate_errors("create", collection, document_id):
            with session_scope(self.factory) as session:
                if session.get(DocumentRow, (collection, document_id)) is not None:
                    raise AlreadyExists(f"{collection}/{document_id} already exists")
                row = DocumentRow(
                    collection=collection,
                    id=document_id,
                    user_id=str(data.get("user_id") or ""),
                    data=data,
                )
                session.add(row)
                session.flush()
                return self._to_document(row)

    def get_document(self, collection, document_id):
        with _translate_errors("get", collection, document_id):
            with session_scope(self.factory) as session:
                row = session.get(DocumentRow, (collection, document_id))
                if row is None:
                    raise NotFound(f"{collection}/{document_id} not found")
                return self._to_document(row)

    def update_document(self, collection, document_id, partial_fields):
        with _translate_errors("update", collection, document_id):
            with session_scope(self.factory) as session:
                row = session.get(DocumentRow, (collection, document_id))
                if row is None:
                    raise NotFound(f"{collection}/{document_id} not found")
                merged = dict(row.data or {})
                merged.update(partial_fields)
                # Reassign so the JSON column is flagged dirty.
                row.data = merged
                if "user_id" in partial_fields:
                    row.user_id = str(partial_fields["user_id"] or "")
                session.flush()
                return self._to_document(row)

    def list_documents(self, collection, filters=None, ordering=None):
        filters = dict(filters or {})
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        if "user_id" in filters:
            stmt = stmt.where(DocumentRow.user_id == str(filters["user_id"]))
        with _translate_errors("list", collection):
            with session_scope(self.factory) as session:
                rows = session.scalars(stmt).all()
                docs = [
                    self._to_document(row)
                    for row in rows
                    if _matches(row.data, filters)
                ]
        return _sort_documents(docs, ordering)

    def delete_document(self, collection, document_id):
        with _translate_errors("delete", collection, document_id):
            with session_scope(self.factory) as session:
                row = session.get(DocumentRow, (collection, document_id))
                if row is None:
                    raise NotFound(f"{collection}/{document_id} not found")
                session.delete(row)
