"""
Модуль векторного хранилища.

Отвечает за:
- Хранение записей (текст, эмбединг, метаданные страницы) в памяти
- Генерацию эмбедингов для чанков с отчётом о прогрессе
- Поиск по косинусному сходству
- Форматирование результатов поиска в контекст для LLM
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

import numpy as np
import structlog

from ..errors import ConfigurationError, DimensionMismatchError, DocumentMismatchError

if TYPE_CHECKING:
    from .embeddings import EmbeddingProvider
    from .rate_limit import TokenBucket
    from .segmenter import TextChunk


logger = structlog.get_logger(__name__)

NO_CONTEXT_MESSAGE = "В документе не найдено релевантного контекста."
CONTEXT_DELIMITER = "\n\n---\n\n"

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class RecordMetadata:
    """Метаданные записи."""
    page_number: int
    chunk_index: int
    document_id: Optional[str] = None


@dataclass
class VectorRecord:
    """Запись хранилища: текст чанка и его эмбединг."""
    record_id: str
    text: str
    embedding: List[float]
    metadata: RecordMetadata

    @property
    def dimension(self) -> int:
        return len(self.embedding)


@dataclass
class SearchResult:
    """Результат поиска."""
    record: VectorRecord
    similarity: float


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Вычисление косинусного сходства между векторами.

    Args:
        vec1: Первый вектор
        vec2: Второй вектор

    Returns:
        Значение от -1 до 1; 0 если норма одного из векторов равна нулю

    Raises:
        DimensionMismatchError: Если длины векторов различаются

    Формула:
    cos(θ) = (A · B) / (||A|| * ||B||)
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        raise DimensionMismatchError(
            f"Векторы разной размерности: {a.shape[0]} и {b.shape[0]}"
        )

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


class VectorStore:
    """
    Векторное хранилище в памяти для одного документа.

    Обеспечивает:
    - Вставку и перезапись записей по id
    - Контроль единой размерности эмбедингов и единого документа
    - Поиск top-K по косинусному сходству

    Все публичные операции выполняются под одной блокировкой.
    """

    def __init__(self, embedder: Optional['EmbeddingProvider'] = None) -> None:
        """
        Args:
            embedder: Провайдер эмбедингов по умолчанию для поиска и индексации
        """
        self._embedder = embedder
        self._records: Dict[str, VectorRecord] = {}
        self._document_id: Optional[str] = None
        self._dimension: Optional[int] = None
        self._lock = threading.RLock()

    def clear(self) -> None:
        """Удаление всех записей и id документа."""
        with self._lock:
            self._records.clear()
            self._document_id = None
            self._dimension = None

    def set_document_id(self, document_id: Optional[str]) -> None:
        with self._lock:
            self._document_id = document_id

    def get_document_id(self) -> Optional[str]:
        return self._document_id

    def size(self) -> int:
        return len(self._records)

    def is_empty(self) -> bool:
        return not self._records

    @property
    def dimension(self) -> Optional[int]:
        """Размерность эмбедингов хранилища (None для пустого)."""
        return self._dimension

    def add_record(self, record: VectorRecord) -> None:
        """
        Вставка или перезапись записи по id.

        Raises:
            DimensionMismatchError: Размерность не совпадает с уже сохранёнными
            DocumentMismatchError: Запись принадлежит другому документу
        """
        with self._lock:
            doc_id = record.metadata.document_id
            if (doc_id is not None and self._document_id is not None
                    and doc_id != self._document_id):
                raise DocumentMismatchError(
                    f"Запись документа '{doc_id}' не может быть добавлена "
                    f"в хранилище документа '{self._document_id}'. Вызовите clear()"
                )
            if self._dimension is not None and record.dimension != self._dimension:
                raise DimensionMismatchError(
                    f"Размерность эмбединга {record.dimension} не совпадает с "
                    f"размерностью хранилища {self._dimension}. Вызовите clear()"
                )
            if record.dimension == 0:
                raise DimensionMismatchError("Пустой вектор эмбединга")

            self._records[record.record_id] = record
            self._dimension = record.dimension

    def records(self) -> List[VectorRecord]:
        """Снимок записей в порядке вставки."""
        with self._lock:
            return list(self._records.values())

    def add_chunks_with_embeddings(self, chunks: Sequence['TextChunk'],
                                   embedder: Optional['EmbeddingProvider'] = None,
                                   on_progress: Optional[ProgressCallback] = None,
                                   rate_limiter: Optional['TokenBucket'] = None,
                                   cancel_token=None,
                                   max_concurrency: int = 1,
                                   on_tokens_used: Optional[Callable[[int], None]] = None) -> int:
        """
        Генерация эмбедингов для чанков и вставка записей.

        Args:
            chunks: Чанки в порядке документа
            embedder: Провайдер эмбедингов
            on_progress: Вызывается как (current, total) после каждой вставки
            rate_limiter: Лимитер частоты вызовов провайдера
            cancel_token: Токен отмены (проверяется между чанками)
            max_concurrency: Число одновременных запросов эмбединга
            on_tokens_used: Вызывается с числом токенов каждого вызова провайдера

        Returns:
            Суммарное число токенов, потраченных на эмбединги

        Note:
            Вставка и прогресс всегда идут в порядке чанков,
            даже при max_concurrency > 1.
        """
        embedder = self._resolve_embedder(embedder)
        total = len(chunks)
        tokens_used = 0
        window = max(1, max_concurrency)

        def embed_one(chunk: 'TextChunk'):
            if rate_limiter is not None:
                rate_limiter.acquire()
            return embedder.embed(chunk.text)

        executor = ThreadPoolExecutor(max_workers=window) if window > 1 else None
        try:
            for window_start in range(0, total, window):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                batch = chunks[window_start:window_start + window]
                if executor is None:
                    results = [embed_one(batch[0])]
                else:
                    results = list(executor.map(embed_one, batch))

                for offset, (chunk, result) in enumerate(zip(batch, results)):
                    index = window_start + offset
                    tokens_used += result.tokens_used
                    if on_tokens_used is not None:
                        on_tokens_used(result.tokens_used)
                    self.add_record(VectorRecord(
                        record_id=chunk.chunk_id,
                        text=chunk.text,
                        embedding=list(result.vector),
                        metadata=RecordMetadata(
                            page_number=chunk.page_number,
                            chunk_index=index,
                            document_id=self._document_id
                        )
                    ))
                    if on_progress is not None:
                        on_progress(index + 1, total)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        return tokens_used

    def search(self, query: str, top_k: int = 5,
               embedder: Optional['EmbeddingProvider'] = None,
               on_tokens_used: Optional[Callable[[int], None]] = None) -> List[SearchResult]:
        """
        Поиск записей, наиболее близких к запросу.

        Args:
            query: Поисковый запрос
            top_k: Количество результатов
            embedder: Провайдер эмбедингов (по умолчанию - из конструктора)
            on_tokens_used: Вызывается с числом токенов эмбединга запроса

        Returns:
            Список SearchResult, отсортированный по убыванию сходства,
            длиной min(top_k, size()). Для пустого хранилища - [] без
            обращения к провайдеру.

        Raises:
            ValueError: Если top_k < 1
            ConfigurationError: Если провайдер эмбедингов не задан
            DimensionMismatchError: Если размерность запроса отличается
        """
        if top_k < 1:
            raise ValueError(f"top_k должен быть >= 1: {top_k}")
        if self.is_empty():
            return []

        embedder = self._resolve_embedder(embedder)
        embedding = embedder.embed(query)
        if on_tokens_used is not None:
            on_tokens_used(embedding.tokens_used)
        query_vector = np.asarray(embedding.vector, dtype=float)

        with self._lock:
            records = list(self._records.values())
            if not records:
                return []
            if query_vector.shape[0] != self._dimension:
                raise DimensionMismatchError(
                    f"Размерность запроса {query_vector.shape[0]} не совпадает "
                    f"с размерностью хранилища {self._dimension}"
                )
            similarities = self._compute_all_similarities(query_vector, records)

        # Стабильная сортировка: при равенстве сохраняется порядок вставки
        order = sorted(range(len(records)), key=lambda i: similarities[i], reverse=True)
        logger.debug("vector_search", records=len(records), top_k=top_k)
        return [
            SearchResult(record=records[i], similarity=float(similarities[i]))
            for i in order[:top_k]
        ]

    def context_from_results(self, results: Sequence[SearchResult]) -> str:
        """
        Форматирование результатов поиска в контекст для LLM.

        Формат:
        [Источник 1 - Страница 3, релевантность: 87.5%]
        <текст чанка>

        ---

        [Источник 2 - ...]
        """
        if not results:
            return NO_CONTEXT_MESSAGE

        parts = []
        for i, result in enumerate(results, 1):
            parts.append(
                f"[Источник {i} - Страница {result.record.metadata.page_number}, "
                f"релевантность: {result.similarity * 100:.1f}%]\n"
                f"{result.record.text}"
            )
        return CONTEXT_DELIMITER.join(parts)

    @staticmethod
    def page_numbers(results: Sequence[SearchResult]) -> List[int]:
        """Отсортированные уникальные номера страниц результатов."""
        return sorted({r.record.metadata.page_number for r in results})

    @staticmethod
    def _compute_all_similarities(query_vector: np.ndarray,
                                  records: List[VectorRecord]) -> np.ndarray:
        """Косинусное сходство запроса со всеми записями (нулевые нормы дают 0)."""
        matrix = np.asarray([r.embedding for r in records], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        dots = matrix @ query_vector
        similarities = np.zeros(len(records), dtype=float)
        nonzero = norms != 0
        similarities[nonzero] = dots[nonzero] / norms[nonzero]
        return np.clip(similarities, -1.0, 1.0)

    def _resolve_embedder(self, embedder: Optional['EmbeddingProvider']) -> 'EmbeddingProvider':
        embedder = embedder or self._embedder
        if embedder is None:
            raise ConfigurationError("Провайдер эмбедингов не задан")
        return embedder
