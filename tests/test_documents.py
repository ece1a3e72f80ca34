from sqlalchemy import event

from vault_agents.database import Document, session_scope, utcnow
from vault_agents.repositories.documents import normalize_content


def test_normalize_content_canonicalises_whitespace():
    raw = "  Title\r\n\r\n\r\n\r\nBody line   \r\nnext word  \n"
    assert normalize_content(raw) == "Title\n\nBody line\nnext word"


def test_insert_deduplicates_equivalent_content(documents):
    first = documents.insert("Notes", "manual", "Alpha\n\nBeta")
    second = documents.insert("Notes again", "manual", "  Alpha\r\n\r\n\r\nBeta  \r\n")

    assert first.created is True
    assert second.created is False
    assert second.id == first.id


def test_tags_related_and_top_tags(documents):
    a = documents.insert("A", "manual", "a").id
    b = documents.insert("B", "manual", "b").id
    c = documents.insert("C", "manual", "c").id
    documents.set_tags(a, ["rust", "databases"])
    documents.set_tags(b, ["databases"])
    documents.set_tags(c, ["gardening"])

    related = documents.find_related(a, ["rust", "databases"])
    assert [doc.id for doc in related] == [b]
    assert documents.get_tags(a) == ["rust", "databases"]

    top = documents.get_top_tags(2)
    assert top[0].tag == "databases" and top[0].count == 2
    assert [doc.id for doc in documents.list_by_tag("databases")] == [b, a]


def test_url_lookups(documents):
    documents.insert("Page", "webScout", "page body", url="https://example.com/page")

    assert documents.exists("https://example.com/page")
    assert not documents.exists("https://example.com/other")
    assert documents.filter_existing(["https://example.com/other", "https://example.com/page"]) == [
        "https://example.com/page"
    ]


def test_insert_reuses_row_written_by_a_concurrent_ingest(documents, session_factory):
    winner = {}

    def insert_same_content_first(session, flush_context, instances):
        pending = [obj for obj in session.new if isinstance(obj, Document)]
        if winner or not pending:
            return
        winner["started"] = True
        with session_scope(session_factory) as other:
            row = Document(
                title="Other writer",
                source="manual",
                content=pending[0].content,
                content_hash=pending[0].content_hash,
                created_at=utcnow(),
            )
            other.add(row)
            other.flush()
            winner["id"] = row.id

    event.listen(session_factory, "before_flush", insert_same_content_first)
    try:
        result = documents.insert("Mine", "manual", "Shared body")
    finally:
        event.remove(session_factory, "before_flush", insert_same_content_first)

    assert result.created is False
    assert result.id == winner["id"]
    assert [doc.title for doc in documents.list_recent()] == ["Other writer"]
