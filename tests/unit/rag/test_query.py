"""Tests for the QueryEngine: search, dedup by source, context, cited answer."""

from __future__ import annotations

import pytest

from ragkb.db.vectors import SearchHit, VectorRecord
from ragkb.errors import ConfigurationError
from ragkb.rag.query import NO_CONTEXT_ANSWER, QueryEngine, best_hit_per_source, build_context


def _hit(url: str, distance: float, text: str = "chunk") -> SearchHit:
    return SearchHit(
        key=f"k-{url}-{distance}",
        distance=distance,
        metadata={"url": url, "title": f"title {url}", "text": text},
    )


def _seed(runtime, records):
    index = runtime.vector_index
    collection = index.ensure_collection("t1", 2)
    index.upsert(collection, records)


def _rec(key, vec, url, source_id, tags=""):
    return VectorRecord(
        key=key,
        embedding=vec,
        source_id=source_id,
        chunk_id=source_id * 10,
        text=f"text of {key}",
        url=url,
        title=f"Title {source_id}",
        tags=tags,
    )


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def test_best_hit_per_source_keeps_closest():
    hits = [_hit("https://a", 0.3, "far"), _hit("https://a", 0.1, "near"), _hit("https://b", 0.2)]
    kept = best_hit_per_source(hits)
    assert [(h.url, h.distance) for h in kept] == [("https://a", 0.1), ("https://b", 0.2)]
    assert kept[0].metadata["text"] == "near"


def test_best_hit_per_source_drops_missing_url():
    assert best_hit_per_source([_hit("", 0.1)]) == []


def test_best_hit_per_source_empty():
    assert best_hit_per_source([]) == []


def test_build_context_numbers_sources():
    context = build_context([_hit("https://a", 0.1, "alpha"), _hit("https://b", 0.2, "beta")])
    assert context.startswith("Source 1 (URL: https://a)\nTitle: title https://a\nalpha")
    assert "Source 2 (URL: https://b)" in context
    assert context.index("Source 1") < context.index("Source 2")


# ------------------------------------------------------------------
# QueryEngine
# ------------------------------------------------------------------


@pytest.fixture
def runtime(make_config, make_runtime, fake_embedder):
    fake_embedder.dims = 2
    return make_runtime(make_config(("t1", "t2")))


async def test_answer_dedups_and_cites(runtime, fake_completion):
    _seed(
        runtime,
        [
            _rec("t1_1_10", [1.0, 0.0], "https://a", 1),
            _rec("t1_1_11", [0.9, 0.1], "https://a", 1),
            _rec("t1_2_20", [0.0, 1.0], "https://b", 2),
        ],
    )
    result = await QueryEngine(runtime).answer("What is A?", target="t1")

    assert result.success
    assert result.answer == fake_completion.text
    assert sorted(s.url for s in result.sources) == ["https://a", "https://b"]
    assert len(result.sources) == 2
    assert result.sources[0].distance <= result.sources[1].distance

    prompt, system = fake_completion.prompts[0]
    assert "Question: What is A?" in prompt
    assert "Source 1" in prompt and "Source 2" in prompt
    assert "[Source N]" in system


async def test_missing_collection_is_empty_success(runtime, fake_completion):
    result = await QueryEngine(runtime).answer("anything?", target="t2")
    assert result.success
    assert result.answer == NO_CONTEXT_ANSWER
    assert result.sources == []
    assert fake_completion.prompts == []


async def test_tag_filter_without_match_is_empty_success(runtime):
    _seed(runtime, [_rec("t1_1_10", [1.0, 0.0], "https://a", 1, tags="ai")])
    result = await QueryEngine(runtime).answer("q", tags=["cooking"], target="t1")
    assert result.success
    assert result.answer == NO_CONTEXT_ANSWER


async def test_tag_filter_selects_sources(runtime):
    _seed(
        runtime,
        [
            _rec("t1_1_10", [1.0, 0.0], "https://a", 1, tags="ai,ml"),
            _rec("t1_2_20", [1.0, 0.0], "https://b", 2, tags="cooking"),
        ],
    )
    result = await QueryEngine(runtime).answer("q", tags=["ml"], target="t1")
    assert [s.url for s in result.sources] == ["https://a"]


async def test_default_target_used(runtime):
    result = await QueryEngine(runtime).answer("q")
    assert result.target == "t1"


async def test_unknown_target_raises(runtime):
    with pytest.raises(ConfigurationError):
        await QueryEngine(runtime).answer("q", target="missing")


async def test_embedding_failure_is_structured_error(runtime, fake_embedder):
    fake_embedder.fail = True
    result = await QueryEngine(runtime).answer("q", target="t1")
    assert not result.success
    assert "Could not embed query" in result.error


async def test_dimension_mismatch_is_structured_error(runtime, fake_embedder):
    _seed(runtime, [_rec("t1_1_10", [1.0, 0.0], "https://a", 1)])
    fake_embedder.dims = 3
    result = await QueryEngine(runtime).answer("q", target="t1")
    assert not result.success
    assert "dimensions" in result.error


async def test_completion_failure_is_structured_error(runtime, fake_completion):
    _seed(runtime, [_rec("t1_1_10", [1.0, 0.0], "https://a", 1)])
    fake_completion.fail = True
    result = await QueryEngine(runtime).answer("q", target="t1")
    assert not result.success
    assert result.sources == []
    assert "All capabilities failed" in result.error


async def test_to_dict_shape(runtime):
    _seed(runtime, [_rec("t1_1_10", [1.0, 0.0], "https://a", 1)])
    data = (await QueryEngine(runtime).answer("q", target="t1")).to_dict()
    assert set(data) == {"success", "question", "target", "answer", "sources", "error"}
    assert set(data["sources"][0]) == {"url", "title", "text", "distance"}
