"""
Тесты для векторного хранилища.
"""

import unittest
from unittest.mock import Mock
import sys
import os

# Добавляем путь к src для импорта
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from docrag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocumentMismatchError,
    IndexingCancelledError,
)
from docrag.rag.embeddings import EmbeddingAPIError
from docrag.rag.indexer import CancellationToken
from docrag.rag.segmenter import TextChunk
from docrag.rag.vector_store import (
    NO_CONTEXT_MESSAGE,
    CONTEXT_DELIMITER,
    RecordMetadata,
    SearchResult,
    VectorRecord,
    VectorStore,
    cosine_similarity,
)

from fakes import FakeEmbedder


VOCABULARY = ["кошка", "собака", "налог", "договор"]


def make_record(record_id: str, embedding, page: int = 1, document_id: str = None) -> VectorRecord:
    return VectorRecord(
        record_id=record_id,
        text=f"текст {record_id}",
        embedding=embedding,
        metadata=RecordMetadata(page_number=page, chunk_index=0, document_id=document_id)
    )


def make_chunks(texts):
    return [
        TextChunk(chunk_id=f"chunk_{i}", text=t, page_number=i + 1,
                  start_offset=0, end_offset=len(t))
        for i, t in enumerate(texts)
    ]


class TestCosineSimilarity(unittest.TestCase):
    """Тесты для вычисления косинусного сходства."""

    def test_identical_vectors(self):
        vec = [1.0, 2.0, 3.0, 4.0, 5.0]
        self.assertAlmostEqual(cosine_similarity(vec, vec), 1.0, places=6)

    def test_orthogonal_vectors(self):
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0, 0.0], [0.0, 1.0, 0.0]), 0.0, places=6)

    def test_opposite_vectors(self):
        self.assertAlmostEqual(
            cosine_similarity([1.0, 2.0, 3.0], [-1.0, -2.0, -3.0]), -1.0, places=6
        )

    def test_zero_vector(self):
        """Нулевой вектор даёт 0, а не NaN."""
        self.assertEqual(cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]), 0.0)
        self.assertEqual(cosine_similarity([0.0, 0.0], [0.0, 0.0]), 0.0)

    def test_known_value(self):
        # Векторы под углом 60 градусов: cos(60°) ≈ 0.5
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0], [0.5, 0.866025]), 0.5, places=4)

    def test_symmetry_and_range(self):
        pairs = [
            ([0.3, -1.2, 4.0], [2.0, 0.1, -0.5]),
            ([1e-3, 5.0, 2.0], [7.0, 7.0, 7.0]),
        ]
        for a, b in pairs:
            ab = cosine_similarity(a, b)
            self.assertEqual(ab, cosine_similarity(b, a))
            self.assertGreaterEqual(ab, -1.0)
            self.assertLessEqual(ab, 1.0)

    def test_dimension_mismatch(self):
        with self.assertRaises(DimensionMismatchError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestVectorStoreBasics(unittest.TestCase):
    """Тесты базовых операций хранилища."""

    def setUp(self):
        self.store = VectorStore()

    def test_initial_state(self):
        self.assertTrue(self.store.is_empty())
        self.assertEqual(self.store.size(), 0)
        self.assertIsNone(self.store.get_document_id())
        self.assertIsNone(self.store.dimension)

    def test_add_record_and_overwrite(self):
        """Запись с тем же id перезаписывается."""
        self.store.add_record(make_record("a", [1.0, 0.0]))
        self.store.add_record(make_record("b", [0.0, 1.0]))
        self.store.add_record(make_record("a", [1.0, 1.0]))

        self.assertEqual(self.store.size(), 2)
        self.assertEqual(self.store.records()[0].embedding, [1.0, 1.0])
        self.assertEqual(self.store.dimension, 2)

    def test_dimension_mismatch_rejected(self):
        self.store.add_record(make_record("a", [1.0, 0.0]))

        with self.assertRaises(DimensionMismatchError):
            self.store.add_record(make_record("b", [1.0, 0.0, 0.0]))
        self.assertEqual(self.store.size(), 1)

    def test_empty_embedding_rejected(self):
        with self.assertRaises(DimensionMismatchError):
            self.store.add_record(make_record("a", []))

    def test_other_document_rejected(self):
        self.store.set_document_id("doc-a")

        with self.assertRaises(DocumentMismatchError):
            self.store.add_record(make_record("a", [1.0], document_id="doc-b"))

    def test_clear_resets_everything(self):
        """clear() удаляет записи, id документа и размерность."""
        self.store.set_document_id("doc-a")
        self.store.add_record(make_record("a", [1.0, 0.0], document_id="doc-a"))

        self.store.clear()

        self.assertTrue(self.store.is_empty())
        self.assertIsNone(self.store.get_document_id())
        self.store.add_record(make_record("b", [1.0, 0.0, 0.0]))
        self.assertEqual(self.store.dimension, 3)


class TestVectorStoreSearch(unittest.TestCase):
    """Тесты поиска."""

    def setUp(self):
        self.embedder = FakeEmbedder(VOCABULARY)
        self.store = VectorStore(self.embedder)

    def test_empty_store_short_circuit(self):
        """Поиск в пустом хранилище не вызывает провайдера."""
        embedder = Mock()

        results = self.store.search("кошка", 5, embedder=embedder)

        self.assertEqual(results, [])
        embedder.embed.assert_not_called()

    def test_top_k_ordering_and_length(self):
        self.store.add_record(make_record("cat", [1.0, 0.0, 0.0, 0.0]))
        self.store.add_record(make_record("mixed", [1.0, 1.0, 0.0, 0.0]))
        self.store.add_record(make_record("tax", [0.0, 0.0, 1.0, 0.0]))

        for k in (1, 2, 3, 10):
            results = self.store.search("кошка", k)
            self.assertEqual(len(results), min(k, 3))
            similarities = [r.similarity for r in results]
            self.assertEqual(similarities, sorted(similarities, reverse=True))

        results = self.store.search("кошка", 3)
        self.assertEqual([r.record.record_id for r in results], ["cat", "mixed", "tax"])
        self.assertAlmostEqual(results[0].similarity, 1.0, places=6)
        self.assertAlmostEqual(results[2].similarity, 0.0, places=6)

    def test_single_embedding_call_per_query(self):
        self.store.add_record(make_record("cat", [1.0, 0.0, 0.0, 0.0]))
        self.store.search("кошка", 5)
        self.assertEqual(self.embedder.calls, ["кошка"])

    def test_query_tokens_reported(self):
        self.store.add_record(make_record("cat", [1.0, 0.0, 0.0, 0.0]))
        usage = []

        self.store.search("кошка и собака", 5, on_tokens_used=usage.append)

        self.assertEqual(usage, [3])

    def test_zero_vector_record_scores_zero(self):
        self.store.add_record(make_record("zero", [0.0, 0.0, 0.0, 0.0]))
        results = self.store.search("кошка", 1)
        self.assertEqual(results[0].similarity, 0.0)

    def test_query_dimension_mismatch(self):
        self.store.add_record(make_record("short", [1.0, 0.0]))
        with self.assertRaises(DimensionMismatchError):
            self.store.search("кошка", 1)

    def test_invalid_top_k(self):
        with self.assertRaises(ValueError):
            self.store.search("кошка", 0)

    def test_no_embedder(self):
        store = VectorStore()
        store.add_record(make_record("cat", [1.0]))
        with self.assertRaises(ConfigurationError):
            store.search("кошка", 1)

    def test_provider_error_propagates(self):
        self.store.add_record(make_record("cat", [1.0, 0.0, 0.0, 0.0]))
        embedder = FakeEmbedder(VOCABULARY, fail_on_call=1, error=EmbeddingAPIError("boom"))
        with self.assertRaises(EmbeddingAPIError):
            self.store.search("кошка", 1, embedder=embedder)


class TestContextFormatting(unittest.TestCase):
    """Тесты форматирования контекста."""

    def setUp(self):
        self.store = VectorStore()

    def test_empty_results(self):
        self.assertEqual(self.store.context_from_results([]), NO_CONTEXT_MESSAGE)

    def test_labels_and_delimiter(self):
        results = [
            SearchResult(record=make_record("a", [1.0], page=3), similarity=0.875),
            SearchResult(record=make_record("b", [1.0], page=7), similarity=0.5),
        ]

        context = self.store.context_from_results(results)

        parts = context.split(CONTEXT_DELIMITER)
        self.assertEqual(len(parts), 2)
        self.assertEqual(parts[0], "[Источник 1 - Страница 3, релевантность: 87.5%]\nтекст a")
        self.assertEqual(parts[1], "[Источник 2 - Страница 7, релевантность: 50.0%]\nтекст b")

    def test_page_numbers(self):
        results = [
            SearchResult(record=make_record("a", [1.0], page=7), similarity=0.9),
            SearchResult(record=make_record("b", [1.0], page=2), similarity=0.8),
            SearchResult(record=make_record("c", [1.0], page=7), similarity=0.7),
        ]
        self.assertEqual(VectorStore.page_numbers(results), [2, 7])


class TestAddChunksWithEmbeddings(unittest.TestCase):
    """Тесты генерации эмбедингов для чанков."""

    def setUp(self):
        self.embedder = FakeEmbedder(VOCABULARY)
        self.store = VectorStore(self.embedder)
        self.store.set_document_id("doc-1")
        self.chunks = make_chunks(["кошка", "собака собака", "налог", "договор налог"])

    def test_inserts_in_order_with_progress(self):
        progress = []

        tokens = self.store.add_chunks_with_embeddings(
            self.chunks,
            on_progress=lambda current, total: progress.append((current, total))
        )

        self.assertEqual(progress, [(1, 4), (2, 4), (3, 4), (4, 4)])
        self.assertEqual(tokens, 1 + 2 + 1 + 2)
        records = self.store.records()
        self.assertEqual([r.record_id for r in records], [c.chunk_id for c in self.chunks])
        self.assertEqual([r.metadata.chunk_index for r in records], [0, 1, 2, 3])
        self.assertTrue(all(r.metadata.document_id == "doc-1" for r in records))
        self.assertEqual(records[1].metadata.page_number, 2)

    def test_concurrent_embedding_keeps_order(self):
        progress = []

        self.store.add_chunks_with_embeddings(
            self.chunks,
            on_progress=lambda current, total: progress.append(current),
            max_concurrency=3
        )

        self.assertEqual(progress, [1, 2, 3, 4])
        self.assertEqual(
            [r.record_id for r in self.store.records()],
            [c.chunk_id for c in self.chunks]
        )

    def test_rate_limiter_called_per_chunk(self):
        limiter = Mock()

        self.store.add_chunks_with_embeddings(self.chunks, rate_limiter=limiter)

        self.assertEqual(limiter.acquire.call_count, len(self.chunks))

    def test_cancellation_between_chunks(self):
        token = CancellationToken()

        def on_progress(current, total):
            if current == 2:
                token.cancel()

        with self.assertRaises(IndexingCancelledError):
            self.store.add_chunks_with_embeddings(
                self.chunks, on_progress=on_progress, cancel_token=token
            )
        self.assertEqual(self.store.size(), 2)
        self.assertEqual(len(self.embedder.calls), 2)

    def test_provider_error_stops_loop(self):
        embedder = FakeEmbedder(VOCABULARY, fail_on_call=3, error=EmbeddingAPIError("boom"))

        with self.assertRaises(EmbeddingAPIError):
            self.store.add_chunks_with_embeddings(self.chunks, embedder)
        self.assertEqual(len(embedder.calls), 3)

    def test_tokens_reported_per_chunk_until_error(self):
        embedder = FakeEmbedder(VOCABULARY, fail_on_call=3, error=EmbeddingAPIError("boom"))
        usage = []

        with self.assertRaises(EmbeddingAPIError):
            self.store.add_chunks_with_embeddings(
                self.chunks, embedder, on_tokens_used=usage.append
            )
        self.assertEqual(usage, [1, 2])


if __name__ == '__main__':
    unittest.main()
