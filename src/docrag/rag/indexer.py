"""
Модуль индексации документа.

Отвечает за:
- Координацию сегментации и генерации эмбедингов
- Отчёт о прогрессе по стадиям (извлечение, эмбединги, завершение)
- Отслеживание состояния индекса и id документа
- Откат хранилища при любой ошибке или отмене
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import structlog

from ..config import RAGConfig
from ..errors import (
    ConfigurationError,
    IndexingCancelledError,
    IndexingInProgressError,
)
from .documents import DocumentSource
from .embeddings import EmbeddingProvider
from .rate_limit import TokenBucket
from .segmenter import extract_and_chunk
from .vector_store import VectorStore


logger = structlog.get_logger(__name__)


class IndexingStage(str, Enum):
    """Стадия, о которой сообщает событие прогресса."""
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    COMPLETE = "complete"


class IndexState(str, Enum):
    """Состояние индекса документа."""
    NOT_INDEXED = "not_indexed"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass(frozen=True)
class IndexingProgress:
    """Событие прогресса индексации."""
    stage: IndexingStage
    current: int
    total: int
    message: str


@dataclass
class IndexingSummary:
    """Итог успешной индексации."""
    document_id: str
    total_chunks: int
    total_pages: int
    total_characters: int
    tokens_used: int = 0
    empty_pages: List[int] = field(default_factory=list)

    @property
    def has_text(self) -> bool:
        """False если документ не содержит извлекаемого текста (вероятно, скан)."""
        return self.total_characters > 0


ProgressHandler = Callable[[IndexingProgress], None]


class CancellationToken:
    """Флаг отмены индексации, проверяемый между чанками."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IndexingCancelledError("Индексация отменена")


class DocumentIndexer:
    """
    Индексатор документа для RAG.

    Обеспечивает:
    - Очистку хранилища при смене документа
    - Последовательность стадий NOT_INDEXED -> EXTRACTING -> EMBEDDING -> INDEXED
    - Переход в FAILED с очисткой хранилища при любой ошибке
    - Не более одной индексации одновременно
    """

    def __init__(self, store: VectorStore, embedder: EmbeddingProvider,
                 config: Optional[RAGConfig] = None,
                 rate_limiter: Optional[TokenBucket] = None) -> None:
        """
        Инициализация индексатора.

        Args:
            store: Векторное хранилище (принадлежит индексатору и сервису)
            embedder: Провайдер эмбедингов
            config: Параметры чанкинга и лимитов
            rate_limiter: Лимитер вызовов; по умолчанию из config.requests_per_second
        """
        self._store = store
        self._embedder = embedder
        self._config = config or RAGConfig()
        self._rate_limiter = rate_limiter or TokenBucket(self._config.requests_per_second)
        self._state = IndexState.NOT_INDEXED
        self._run_lock = threading.Lock()

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def config(self) -> RAGConfig:
        return self._config

    @config.setter
    def config(self, config: RAGConfig) -> None:
        self._config = config
        self._rate_limiter = TokenBucket(config.requests_per_second)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def get_document_id(self) -> Optional[str]:
        return self._store.get_document_id()

    def is_document_indexed(self, document_id: Optional[str] = None) -> bool:
        """
        Проверка готовности индекса.

        Args:
            document_id: Id открытого документа; None - текущий id хранилища

        Returns:
            True если индексация завершена, хранилище не пусто и
            id документа совпадает
        """
        if self._state != IndexState.INDEXED or self._store.is_empty():
            return False
        if document_id is not None and document_id != self._store.get_document_id():
            return False
        return True

    def index_document(self, document: DocumentSource, document_id: str,
                       on_progress: Optional[ProgressHandler] = None,
                       cancel_token: Optional[CancellationToken] = None,
                       on_tokens_used: Optional[Callable[[int], None]] = None) -> IndexingSummary:
        """
        Индексация документа: извлечение текста, чанкинг, эмбединги.

        Args:
            document: Источник текста
            document_id: Идентификатор документа
            on_progress: Обработчик событий прогресса
            cancel_token: Токен отмены
            on_tokens_used: Вызывается с числом токенов каждого вызова эмбединга,
                в том числе при неудачной индексации

        Returns:
            IndexingSummary со статистикой

        Raises:
            IndexingInProgressError: Если индексация уже выполняется
            IndexingCancelledError: Если индексация отменена
            ConfigurationError, ExtractionError, ProviderError: Пробрасываются
            без изменений; хранилище при этом очищается
        """
        if not self._run_lock.acquire(blocking=False):
            raise IndexingInProgressError("Индексация уже выполняется")
        try:
            return self._run(document, document_id, on_progress, cancel_token, on_tokens_used)
        finally:
            self._run_lock.release()

    def _run(self, document: DocumentSource, document_id: str,
             on_progress: Optional[ProgressHandler],
             cancel_token: Optional[CancellationToken],
             on_tokens_used: Optional[Callable[[int], None]]) -> IndexingSummary:
        def emit(stage: IndexingStage, current: int, total: int, message: str) -> None:
            if on_progress is not None:
                on_progress(IndexingProgress(stage, current, total, message))

        if self._store.get_document_id() != document_id:
            self._store.clear()
        self._state = IndexState.NOT_INDEXED
        self._store.set_document_id(document_id)

        # Проверка конфигурации до любых сетевых вызовов
        if not self._embedder.is_configured():
            self._fail(document_id, "embedder_not_configured")
            raise ConfigurationError(
                f"Провайдер эмбедингов '{self._embedder.name}' не настроен"
            )

        log = logger.bind(document_id=document_id)
        try:
            self._state = IndexState.EXTRACTING
            extraction = extract_and_chunk(
                document,
                self._config.chunk_size,
                self._config.chunk_overlap
            )
            total_chunks = len(extraction.chunks)
            emit(
                IndexingStage.EXTRACTING,
                extraction.total_pages,
                extraction.total_pages,
                f"Извлечено {total_chunks} чанков из {extraction.total_pages} страниц"
            )
            log.info(
                "text_extracted",
                pages=extraction.total_pages,
                chunks=total_chunks,
                characters=extraction.total_characters,
            )

            # Повторная индексация всегда начинается с чистого хранилища
            self._store.clear()
            self._store.set_document_id(document_id)

            self._state = IndexState.EMBEDDING
            tokens_used = self._store.add_chunks_with_embeddings(
                extraction.chunks,
                self._embedder,
                on_progress=lambda current, total: emit(
                    IndexingStage.EMBEDDING, current, total,
                    f"Эмбединг чанка {current}/{total}..."
                ),
                rate_limiter=self._rate_limiter,
                cancel_token=cancel_token,
                max_concurrency=self._config.max_concurrency,
                on_tokens_used=on_tokens_used
            )
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
        except BaseException as e:
            self._fail(document_id, type(e).__name__)
            raise

        # Индекс без векторов не считается готовым
        self._state = IndexState.INDEXED if total_chunks else IndexState.NOT_INDEXED

        if extraction.has_text:
            message = f"Готово! Проиндексировано {total_chunks} чанков."
        else:
            message = "Текст не найден: документ, вероятно, состоит из сканов."
        emit(IndexingStage.COMPLETE, total_chunks, total_chunks, message)
        log.info("document_indexed", chunks=total_chunks, tokens_used=tokens_used)

        return IndexingSummary(
            document_id=document_id,
            total_chunks=total_chunks,
            total_pages=extraction.total_pages,
            total_characters=extraction.total_characters,
            tokens_used=tokens_used,
            empty_pages=extraction.empty_pages
        )

    def clear(self) -> None:
        """Сброс индекса и id документа."""
        self._store.clear()
        self._state = IndexState.NOT_INDEXED

    def _fail(self, document_id: str, reason: str) -> None:
        """Переход в FAILED: частичный индекс никогда не остаётся доступным."""
        self._store.clear()
        self._state = IndexState.FAILED
        logger.warning("indexing_failed", document_id=document_id, reason=reason)
