import datetime as dt

import pytest

from vault_agents.database import SourceWatchItem, session_scope, utcnow
from vault_agents.errors import InvalidSourceUrlError
from vault_agents.models import SourceKind
from vault_agents.repositories.source_watch import normalize_source_url


def test_normalize_source_url_strips_noise():
    url, domain = normalize_source_url("HTTPS://user:pw@WWW.Example.com/blog/?utm=1#top")
    assert url == "https://www.example.com/blog"
    assert domain == "example.com"


def test_normalize_source_url_rejects_non_http():
    with pytest.raises(InvalidSourceUrlError):
        normalize_source_url("ftp://example.com/file")
    with pytest.raises(InvalidSourceUrlError):
        normalize_source_url("not a url")


def test_normalize_source_url_keeps_root_path():
    assert normalize_source_url("https://Example.com")[0] == "https://example.com/"
    assert normalize_source_url("https://example.com///?q=1")[0] == "https://example.com/"


def test_create_defaults_and_clamps(source_watch):
    source = source_watch.create("https://blog.example.org/", label="  ", kind="podcast", check_interval_hours=500)
    assert source.label == "blog.example.org"
    assert source.kind is SourceKind.SOURCE
    assert source.check_interval_hours == 168
    assert source.last_checked_at is None

    long_label = source_watch.create("https://a.example.com", label="x" * 200, check_interval_hours=0)
    assert len(long_label.label) == 120
    assert long_label.check_interval_hours == 1


def test_update_only_touches_given_fields(source_watch):
    source = source_watch.create("https://news.example.com", label="News", kind=SourceKind.NEWSLETTER)
    updated = source_watch.update(source.id, check_interval_hours=12, is_active=False)
    assert updated.label == "News"
    assert updated.kind is SourceKind.NEWSLETTER
    assert updated.check_interval_hours == 12
    assert updated.is_active is False
    assert source_watch.update(9999, label="x") is None


def test_delete(source_watch):
    source = source_watch.create("https://gone.example.com")
    assert source_watch.delete(source.id)
    assert source_watch.delete(source.id) is False
    assert source_watch.get(source.id) is None


def test_checkout_claims_due_sources_at_most_once(source_watch):
    for idx in range(3):
        source_watch.create(f"https://site{idx}.example.com")
    inactive = source_watch.create("https://inactive.example.com")
    source_watch.update(inactive.id, is_active=False)

    first = source_watch.checkout_due_sources(5)
    second = source_watch.checkout_due_sources(5)

    assert len(first) == 3
    assert all(source.last_checked_at is not None for source in first)
    assert second == []
    assert {s.id for s in first}.isdisjoint({s.id for s in second})


def test_checkout_respects_interval_and_limit(source_watch, session_factory):
    stale = source_watch.create("https://stale.example.com", check_interval_hours=1)
    fresh = source_watch.create("https://fresh.example.com", check_interval_hours=24)
    never = source_watch.create("https://never.example.com")
    with session_scope(session_factory) as session:
        session.get(SourceWatchItem, stale.id).last_checked_at = utcnow() - dt.timedelta(hours=2)
        session.get(SourceWatchItem, fresh.id).last_checked_at = utcnow() - dt.timedelta(hours=2)

    claimed = source_watch.checkout_due_sources(1)
    assert [s.id for s in claimed] == [never.id]

    rest = source_watch.checkout_due_sources(8)
    assert [s.id for s in rest] == [stale.id]
