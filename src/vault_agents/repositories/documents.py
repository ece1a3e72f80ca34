"""Document vault: content-hash deduplicated ingest, tag storage and lookups."""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from ..database import Document, DocumentTag, session_scope, utcnow
from ..models import DocumentRecord, InsertResult, RelatedDoc, TagCount
from ..utils.logging import get_logger

_TRAILING_SPACES = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize_content(text: str) -> str:
    """Canonical form used for hashing: unix newlines, no trailing spaces, at most one blank line."""

    text = (text or "").replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = _TRAILING_SPACES.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class DocumentRepository:
    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory
        self._logger = get_logger("documents")

    def insert(self, title: str, source: str, content: str, url: Optional[str] = None) -> InsertResult:
        normalized = normalize_content(content)
        digest = content_hash(normalized)
        try:
            with session_scope(self._session_factory) as session:
                existing = session.scalar(select(Document.id).where(Document.content_hash == digest))
                if existing is not None:
                    return InsertResult(id=existing, created=False)
                document = Document(
                    title=(title or "").strip() or "Untitled",
                    source=source,
                    url=url,
                    content=normalized,
                    content_hash=digest,
                    created_at=utcnow(),
                )
                session.add(document)
                session.flush()
                self._logger.info("Ingested document %s (%s)", document.id, document.title)
                return InsertResult(id=document.id, created=True)
        except IntegrityError:
            # another writer stored the same content between the lookup and the insert
            with session_scope(self._session_factory) as session:
                existing = session.scalar(select(Document.id).where(Document.content_hash == digest))
            if existing is None:
                raise
            self._logger.debug("Document with hash %s was inserted concurrently; reusing %s", digest[:12], existing)
            return InsertResult(id=existing, created=False)

    def get(self, document_id: int) -> Optional[DocumentRecord]:
        with session_scope(self._session_factory) as session:
            document = session.get(Document, document_id)
            return DocumentRecord.model_validate(document) if document else None

    def get_by_ids(self, document_ids: Sequence[int]) -> List[DocumentRecord]:
        if not document_ids:
            return []
        stmt = select(Document).where(Document.id.in_(list(document_ids)))
        with session_scope(self._session_factory) as session:
            by_id = {doc.id: DocumentRecord.model_validate(doc) for doc in session.scalars(stmt).all()}
        return [by_id[doc_id] for doc_id in document_ids if doc_id in by_id]

    def list_recent(self, limit: int = 10) -> List[DocumentRecord]:
        stmt = select(Document).order_by(Document.created_at.desc(), Document.id.desc()).limit(limit)
        with session_scope(self._session_factory) as session:
            return [DocumentRecord.model_validate(doc) for doc in session.scalars(stmt).all()]

    def list_by_tag(self, tag: str, limit: int = 10) -> List[DocumentRecord]:
        return self.list_by_tags([tag], limit=limit)

    def list_by_tags(self, tags: Iterable[str], limit: int = 10) -> List[DocumentRecord]:
        wanted = [tag.strip().lower() for tag in tags if tag and tag.strip()]
        if not wanted:
            return []
        matching = select(DocumentTag.document_id).where(DocumentTag.tag.in_(wanted))
        stmt = (
            select(Document)
            .where(Document.id.in_(matching))
            .order_by(Document.created_at.desc(), Document.id.desc())
            .limit(limit)
        )
        with session_scope(self._session_factory) as session:
            return [DocumentRecord.model_validate(doc) for doc in session.scalars(stmt).all()]

    def exists(self, url: str) -> bool:
        with session_scope(self._session_factory) as session:
            return session.scalar(select(Document.id).where(Document.url == url).limit(1)) is not None

    def filter_existing(self, urls: Iterable[str]) -> List[str]:
        """Return the subset of ``urls`` already present in the vault."""

        candidates = list(dict.fromkeys(url for url in urls if url))
        if not candidates:
            return []
        with session_scope(self._session_factory) as session:
            found = set(session.scalars(select(Document.url).where(Document.url.in_(candidates))).all())
        return [url for url in candidates if url in found]

    def set_tags(self, document_id: int, tags: Iterable[str]) -> None:
        unique = list(dict.fromkeys(tags))
        with session_scope(self._session_factory) as session:
            session.execute(delete(DocumentTag).where(DocumentTag.document_id == document_id))
            for tag in unique:
                session.add(DocumentTag(document_id=document_id, tag=tag))

    def get_tags(self, document_id: int) -> List[str]:
        stmt = select(DocumentTag.tag).where(DocumentTag.document_id == document_id).order_by(DocumentTag.id)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt).all())

    def set_category(self, document_id: int, category: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(update(Document).where(Document.id == document_id).values(category=category))

    def find_related(self, document_id: int, tags: Sequence[str], limit: int = 10) -> List[RelatedDoc]:
        """Other documents sharing at least one tag, most recent first."""

        if not tags:
            return []
        matching = select(DocumentTag.document_id).where(DocumentTag.tag.in_(list(tags)))
        stmt = (
            select(Document.id, Document.title)
            .where(Document.id.in_(matching), Document.id != document_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
            .limit(limit)
        )
        with session_scope(self._session_factory) as session:
            return [RelatedDoc(id=row.id, title=row.title) for row in session.execute(stmt).all()]

    def get_top_tags(self, limit: int = 10) -> List[TagCount]:
        count = func.count(DocumentTag.id)
        stmt = select(DocumentTag.tag, count).group_by(DocumentTag.tag).order_by(count.desc(), DocumentTag.tag).limit(limit)
        with session_scope(self._session_factory) as session:
            return [TagCount(tag=tag, count=total) for tag, total in session.execute(stmt).all()]


__all__ = ["DocumentRepository", "normalize_content", "content_hash"]
