"""Hybrid retrieval tests: merge order, document expansion, restriction and ordering."""

import pytest

from conftest import EMBEDDING_DIMENSION, FailingEmbedder, HashEmbedder
from core.config import get_settings
from core.exceptions import EmbeddingError
from core.index_service import IndexSnapshot
from core.retriever import (
    HybridRetriever,
    PassthroughRetriever,
    build_retriever,
    expand_documents,
    merge_candidates,
    order_chunks,
)
from core.router import TopicRouter
from database.vector_store import VectorIndex
from models.schema import Chunk, TopicRule


def chunk(document_id: str, ordinal: int, text: str) -> Chunk:
    return Chunk(document_id=document_id, ordinal=ordinal, text=text)


CHUNKS = [
    chunk("standard_capital_repair", 0, "Капитальный ремонт общего имущества включает замену конструкций."),
    chunk("standard_capital_repair", 1, "Решение о ремонте принимает собрание собственников."),
    chunk("standard_capital_repair", 2, "Смета утверждается советом дома."),
    chunk("standard_heating", 0, "Отопление обеспечивает температуру не ниже 18 градусов."),
    chunk("standard_heating", 1, "Отопительный сезон начинается осенью."),
    chunk("standard_waste_removal", 0, "Вывоз мусора производится ежедневно."),
    chunk("standard_waste_removal", 1, "Контейнерная площадка содержится в чистоте."),
]


def make_snapshot(embedder: HashEmbedder, chunks: list[Chunk] = CHUNKS) -> IndexSnapshot:
    index = VectorIndex.build(chunks, embedder, dimension=EMBEDDING_DIMENSION)
    ordered = tuple(sorted(chunks, key=lambda c: (c.document_id, c.ordinal)))
    return IndexSnapshot(index=index, chunks=ordered, fingerprint="test")


def make_retriever(embedder: HashEmbedder, top_k: int = 10, chunks: list[Chunk] = CHUNKS) -> HybridRetriever:
    snapshot = make_snapshot(embedder, chunks)
    return HybridRetriever(
        snapshot_provider=lambda: snapshot,
        embedder=embedder,
        top_k=top_k,
        min_term_length=3,
    )


def test_merge_preserves_first_seen_order() -> None:
    a, b, c, d = (chunk("doc", i, text) for i, text in enumerate("ABCD"))

    assert merge_candidates([a, b], [b, c], [c, d]) == [a, b, c, d]


def test_merge_deduplicates_by_text() -> None:
    first = chunk("doc_a", 0, "одинаковый текст")
    same_text = chunk("doc_b", 3, "одинаковый текст")

    assert merge_candidates([first], [same_text]) == [first]


def test_expand_and_order() -> None:
    hits = [CHUNKS[5], CHUNKS[1]]

    expanded = order_chunks(expand_documents(hits, reversed(CHUNKS)))

    assert [(c.document_id, c.ordinal) for c in expanded] == [
        ("standard_capital_repair", 0),
        ("standard_capital_repair", 1),
        ("standard_capital_repair", 2),
        ("standard_waste_removal", 0),
        ("standard_waste_removal", 1),
    ]


@pytest.mark.asyncio
async def test_strong_match_expands_to_whole_document(embedder: HashEmbedder) -> None:
    retriever = make_retriever(embedder)

    result = await retriever.retrieve(
        "Что такое капитальный ремонт?",
        frozenset({"standard_capital_repair", "law_housing_relations"}),
    )

    assert result.strong_matches == 1
    assert result.documents == ["standard_capital_repair"]
    assert [c.ordinal for c in result.chunks] == [0, 1, 2]


@pytest.mark.asyncio
async def test_vector_hits_are_filtered_to_routed_documents(embedder: HashEmbedder) -> None:
    retriever = make_retriever(embedder)

    result = await retriever.retrieve("Вывоз мусора", frozenset({"standard_heating"}))

    assert result.documents == ["standard_heating"]
    assert result.strong_matches == 0


@pytest.mark.asyncio
async def test_no_candidates_returns_empty(embedder: HashEmbedder) -> None:
    retriever = make_retriever(embedder)

    result = await retriever.retrieve("Вывоз мусора", frozenset({"rules_unknown"}))

    assert result.chunks == ()
    assert result.restricted_to == {"rules_unknown"}


@pytest.mark.asyncio
async def test_empty_restriction_searches_all_documents(embedder: HashEmbedder) -> None:
    retriever = make_retriever(embedder, top_k=1)

    result = await retriever.retrieve("Вывоз мусора ежедневно")

    assert "standard_waste_removal" in result.documents
    assert result.strong_matches == 1
    assert result.vector_matches <= 2


@pytest.mark.asyncio
async def test_expansion_can_exceed_top_k(embedder: HashEmbedder) -> None:
    long_document = [
        chunk("standard_elevators", i, f"Лифт номер {i} проходит технический осмотр.")
        for i in range(8)
    ]
    retriever = make_retriever(embedder, top_k=1, chunks=long_document)

    result = await retriever.retrieve("подъемник")

    assert result.weak_matches == 0
    assert result.vector_matches == 2
    assert len(result.chunks) == 8
    assert [c.ordinal for c in result.chunks] == list(range(8))


@pytest.mark.asyncio
async def test_result_is_sorted_by_document_then_ordinal(embedder: HashEmbedder) -> None:
    retriever = make_retriever(embedder)

    result = await retriever.retrieve("ремонт отопление мусора")

    keys = [(c.document_id, c.ordinal) for c in result.chunks]
    assert keys == sorted(keys)


@pytest.mark.asyncio
async def test_embedding_failure_propagates() -> None:
    retriever = make_retriever(FailingEmbedder())

    with pytest.raises(EmbeddingError):
        await retriever.retrieve("Вывоз мусора")


@pytest.mark.asyncio
async def test_passthrough_retrieves_nothing() -> None:
    result = await PassthroughRetriever().retrieve("Вывоз мусора", frozenset({"standard_waste_removal"}))

    assert result.chunks == ()


def test_build_retriever_follows_mode(embedder: HashEmbedder) -> None:
    settings = get_settings()
    snapshot = make_snapshot(embedder)

    hybrid = build_retriever(settings, lambda: snapshot, embedder)
    passthrough = build_retriever(
        settings.model_copy(update={"RETRIEVAL_MODE": "passthrough"}),
        lambda: snapshot,
        embedder,
    )

    assert isinstance(hybrid, HybridRetriever)
    assert isinstance(passthrough, PassthroughRetriever)


@pytest.mark.asyncio
async def test_definition_question_without_topic_reaches_whole_corpus(embedder: HashEmbedder) -> None:
    router = TopicRouter(
        rules=(TopicRule(name="waste_removal", keywords=("мусор",), documents=("standard_waste_removal",)),),
        baseline_documents=["law_housing_relations"],
    )
    question = "Что такое отопительный сезон?"

    result = await make_retriever(embedder).retrieve(question, router.route(question).documents)

    assert "standard_heating" in result.documents


def test_explicit_zero_top_k_is_kept(embedder: HashEmbedder) -> None:
    snapshot = make_snapshot(embedder)

    retriever = HybridRetriever(snapshot_provider=lambda: snapshot, embedder=embedder, top_k=0)

    assert retriever.top_k == 0
