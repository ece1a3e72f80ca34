"""Watchlist of external sources that web scouting revisits on an interval."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy import func, select, update

from ..database import SourceWatchItem, session_scope, utcnow
from ..errors import InvalidSourceUrlError
from ..models import SourceKind, SourceWatchRecord

DEFAULT_INTERVAL_HOURS = 24
MIN_INTERVAL_HOURS = 1
MAX_INTERVAL_HOURS = 168
MAX_LABEL_LENGTH = 120
DEFAULT_CHECKOUT_LIMIT = 8
_EPOCH = dt.datetime(1970, 1, 1)


def normalize_source_url(raw_url: str) -> Tuple[str, str]:
    """Return ``(url, domain)`` with credentials, query, fragment and trailing slash removed.

    A bare host keeps its root path, so ``https://example.com`` becomes ``https://example.com/``.
    """

    parts = urlsplit((raw_url or "").strip())
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise InvalidSourceUrlError(f"Unsupported source url: {raw_url!r}")
    host = parts.hostname.lower()
    netloc = f"{host}:{parts.port}" if parts.port else host
    path = parts.path.rstrip("/") or "/"
    url = urlunsplit((parts.scheme.lower(), netloc, path, "", ""))
    domain = host[4:] if host.startswith("www.") else host
    return url, domain


def clamp_interval(hours: Optional[int]) -> int:
    if hours is None:
        return DEFAULT_INTERVAL_HOURS
    return max(MIN_INTERVAL_HOURS, min(MAX_INTERVAL_HOURS, int(hours)))


def _label(label: Optional[str], domain: str) -> str:
    cleaned = (label or "").strip()[:MAX_LABEL_LENGTH]
    return cleaned or domain


def _kind(kind: Optional[Union[SourceKind, str]]) -> str:
    if not kind:
        return SourceKind.SOURCE.value
    try:
        return SourceKind(kind).value
    except ValueError:
        return SourceKind.SOURCE.value


class SourceWatchRepository:
    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory

    def create(
        self,
        url: str,
        label: Optional[str] = None,
        kind: Optional[Union[SourceKind, str]] = None,
        check_interval_hours: Optional[int] = None,
        is_active: bool = True,
    ) -> SourceWatchRecord:
        normalized, domain = normalize_source_url(url)
        now = utcnow()
        with session_scope(self._session_factory) as session:
            item = SourceWatchItem(
                url=normalized,
                domain=domain,
                label=_label(label, domain),
                kind=_kind(kind),
                is_active=is_active,
                check_interval_hours=clamp_interval(check_interval_hours),
                created_at=now,
                updated_at=now,
            )
            session.add(item)
            session.flush()
            return SourceWatchRecord.model_validate(item)

    def get(self, source_id: int) -> Optional[SourceWatchRecord]:
        with session_scope(self._session_factory) as session:
            item = session.get(SourceWatchItem, source_id)
            return SourceWatchRecord.model_validate(item) if item else None

    def list_sources(self, active_only: bool = False) -> List[SourceWatchRecord]:
        stmt = select(SourceWatchItem).order_by(SourceWatchItem.updated_at.desc(), SourceWatchItem.id.desc())
        if active_only:
            stmt = stmt.where(SourceWatchItem.is_active.is_(True))
        with session_scope(self._session_factory) as session:
            return [SourceWatchRecord.model_validate(item) for item in session.scalars(stmt).all()]

    def update(
        self,
        source_id: int,
        *,
        url: Optional[str] = None,
        label: Optional[str] = None,
        kind: Optional[Union[SourceKind, str]] = None,
        check_interval_hours: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[SourceWatchRecord]:
        """Update only the fields that are provided; returns ``None`` for an unknown id."""

        with session_scope(self._session_factory) as session:
            item = session.get(SourceWatchItem, source_id)
            if item is None:
                return None
            if url is not None:
                previous_domain = item.domain
                item.url, item.domain = normalize_source_url(url)
                # a label that only echoed the old domain follows the new one
                if label is None and item.label == previous_domain:
                    item.label = item.domain
            if label is not None:
                item.label = _label(label, item.domain)
            if kind is not None:
                item.kind = _kind(kind)
            if check_interval_hours is not None:
                item.check_interval_hours = clamp_interval(check_interval_hours)
            if is_active is not None:
                item.is_active = is_active
            item.updated_at = utcnow()
            session.flush()
            return SourceWatchRecord.model_validate(item)

    def delete(self, source_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            item = session.get(SourceWatchItem, source_id)
            if item is None:
                return False
            session.delete(item)
            return True

    def checkout_due_sources(self, limit: int = DEFAULT_CHECKOUT_LIMIT) -> List[SourceWatchRecord]:
        """Claim up to ``limit`` due sources, marking them checked before returning them.

        The claim is at-most-once: a source is not handed out again until its
        interval elapses, even if the caller fails to use it. Each row is
        claimed with a conditional update on the ``last_checked_at`` value that
        was read, so a concurrent checkout cannot claim the same row twice.
        """

        if limit <= 0:
            return []
        now = utcnow()
        stmt = (
            select(SourceWatchItem)
            .where(SourceWatchItem.is_active.is_(True))
            .order_by(func.coalesce(SourceWatchItem.last_checked_at, _EPOCH).asc(), SourceWatchItem.updated_at.desc())
        )
        claimed: List[SourceWatchRecord] = []
        with session_scope(self._session_factory) as session:
            for item in session.scalars(stmt).all():
                if len(claimed) >= limit:
                    break
                previous = item.last_checked_at
                if previous is not None and previous > now - dt.timedelta(hours=item.check_interval_hours):
                    continue
                guard = (
                    SourceWatchItem.last_checked_at.is_(None)
                    if previous is None
                    else SourceWatchItem.last_checked_at == previous
                )
                result = session.execute(
                    update(SourceWatchItem)
                    .where(SourceWatchItem.id == item.id, guard)
                    .values(last_checked_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                record = SourceWatchRecord.model_validate(item).model_copy(
                    update={"last_checked_at": now, "updated_at": now}
                )
                claimed.append(record)
        return claimed


__all__ = ["SourceWatchRepository", "normalize_source_url", "clamp_interval"]
