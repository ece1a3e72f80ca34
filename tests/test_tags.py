from conftest import FakeGateway

from vault_agents.agents.tags import (
    MAX_FINAL_TAGS,
    UNCATEGORIZED,
    categorize,
    extract_tag_candidates,
    finalize_tags,
    normalize_tag,
)


def test_normalize_tag_rules():
    assert normalize_tag("  Machine-Learning!! ") == "machine learning"
    assert normalize_tag("ml") is None
    assert normalize_tag("Overview") is None
    assert normalize_tag("How To") is None
    assert normalize_tag("one two three four") is None
    assert normalize_tag("x" * 41) is None


def test_finalize_tags_dedupes_and_caps():
    candidates = ["Python", "python!", "summary"] + [f"topic {chr(97 + i)}{chr(97 + i)}" for i in range(12)]
    final = finalize_tags(candidates)
    assert final[0] == "python"
    assert final.count("python") == 1
    assert "summary" not in final
    assert len(final) == MAX_FINAL_TAGS


def test_extract_tag_candidates_caps_raw_tags():
    gateway = FakeGateway(structured={"TagExtraction": {"tags": [f"tag{i}" for i in range(15)]}})
    assert len(extract_tag_candidates(gateway, "T", "content")) == 10


def test_categorize_falls_back_to_uncategorized():
    assert categorize(FakeGateway(structured={"CategoryChoice": {"category": "Finance"}}), "T", ["money"]) == "finance"
    assert categorize(FakeGateway(structured={"CategoryChoice": {"category": "cooking"}}), "T", ["food"]) == UNCATEGORIZED
    assert categorize(FakeGateway(structured={"CategoryChoice": RuntimeError("boom")}), "T", ["x y"]) == UNCATEGORIZED
    assert categorize(FakeGateway(), "T", []) == UNCATEGORIZED
