"""
Сервис вопросов по документу (Retrieval-Augmented Generation).

Отвечает за:
- Индексацию документа через DocumentIndexer
- Поиск релевантных чанков и фильтрацию по порогу сходства
- Сборку контекста и генерацию ответа с указанием источников
- Семантический поиск без генерации
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import structlog

from .config import RAGConfig
from .errors import ConfigurationError, NotIndexedError
from .llm_client import BaseLLMClient, ChatMessage
from .prompts import build_rag_messages
from .rag.documents import DocumentSource
from .rag.embeddings import EmbeddingProvider
from .rag.indexer import (
    CancellationToken,
    DocumentIndexer,
    IndexingSummary,
    ProgressHandler,
)
from .rag.rate_limit import TokenBucket
from .rag.vector_store import SearchResult, VectorStore


logger = structlog.get_logger(__name__)


@dataclass
class Source:
    """Источник ответа."""
    page_number: int
    excerpt: str
    similarity: float


@dataclass
class RAGAnswer:
    """Ответ на вопрос по документу."""
    answer: str
    sources: List[Source] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def page_numbers(self) -> List[int]:
        return sorted({s.page_number for s in self.sources})


def make_excerpt(text: str, max_length: int) -> str:
    """Обрезка текста до max_length символов с многоточием."""
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


class RAGService:
    """
    Основной класс вопросов по документу.

    Координирует работу компонентов:
    - Векторное хранилище (принадлежит экземпляру сервиса)
    - Индексатор документа
    - Провайдер эмбедингов для поиска
    - LLM клиент для генерации ответов
    """

    def __init__(self, embedder: EmbeddingProvider, chat_client: BaseLLMClient,
                 config: Optional[RAGConfig] = None,
                 store: Optional[VectorStore] = None,
                 rate_limiter: Optional[TokenBucket] = None,
                 on_tokens_used: Optional[Callable[[int], None]] = None) -> None:
        """
        Инициализация сервиса.

        Args:
            embedder: Провайдер эмбедингов
            chat_client: LLM клиент для генерации
            config: Параметры RAG (по умолчанию RAGConfig())
            store: Хранилище; по умолчанию создаётся новое
            rate_limiter: Лимитер вызовов эмбедингов при индексации
            on_tokens_used: Вызывается с числом токенов каждого запроса к провайдерам:
                эмбединги индексации (в том числе неудачной), эмбединг запроса,
                генерация ответа
        """
        self._config = config or RAGConfig()
        self._embedder = embedder
        self._chat_client = chat_client
        self._store = store if store is not None else VectorStore(embedder)
        self._indexer = DocumentIndexer(self._store, embedder, self._config, rate_limiter)
        self._on_tokens_used = on_tokens_used

    @property
    def config(self) -> RAGConfig:
        return self._config

    @property
    def store(self) -> VectorStore:
        return self._store

    def configure(self, **overrides) -> RAGConfig:
        """
        Частичное обновление конфигурации.

        Raises:
            ConfigurationError: При неизвестных или некорректных параметрах
        """
        self._config = self._config.with_overrides(**overrides)
        self._indexer.config = self._config
        return self._config

    def is_document_indexed(self, document_id: Optional[str] = None) -> bool:
        return self._indexer.is_document_indexed(document_id)

    def get_document_id(self) -> Optional[str]:
        return self._indexer.get_document_id()

    def index_document(self, document: DocumentSource, document_id: str,
                       on_progress: Optional[ProgressHandler] = None,
                       cancel_token: Optional[CancellationToken] = None) -> IndexingSummary:
        """
        Индексация документа для последующих вопросов.

        См. DocumentIndexer.index_document.
        """
        return self._indexer.index_document(
            document, document_id, on_progress, cancel_token, self._track_tokens
        )

    def query(self, question: str, history: Sequence[ChatMessage] = (),
              language: Optional[str] = None,
              document_id: Optional[str] = None) -> RAGAnswer:
        """
        Ответ на вопрос по проиндексированному документу.

        Args:
            question: Вопрос пользователя
            history: Предыдущие сообщения диалога
            language: Язык ответа
            document_id: Id открытого документа для проверки актуальности индекса

        Returns:
            RAGAnswer с ответом и источниками

        Raises:
            NotIndexedError: Если документ не проиндексирован
            ConfigurationError: Если LLM клиент не настроен
            ProviderError: При ошибке эмбедингов или генерации

        Действия:
        - Найти top_k чанков по сходству с вопросом
        - Отбросить чанки ниже min_similarity
        - Собрать контекст из оставшихся чанков
        - Сгенерировать ответ и сформировать источники из тех же чанков
        """
        expected_id = self._require_indexed(document_id)
        if not self._chat_client.is_configured():
            raise ConfigurationError(
                f"Провайдер генерации '{self._chat_client.name}' не настроен"
            )

        results = self._store.search(
            question, self._config.top_k, self._embedder, self._track_tokens
        )
        self._check_results(results, expected_id)
        relevant_results = [
            r for r in results if r.similarity >= self._config.min_similarity
        ]
        context = self._store.context_from_results(relevant_results)

        messages = build_rag_messages(
            question,
            context,
            history,
            language=language,
            not_found_phrase=self._config.not_found_phrase
        )
        response = self._chat_client.chat(messages)
        self._track_tokens(response.tokens_used)

        logger.info(
            "rag_query_answered",
            document_id=self.get_document_id(),
            retrieved=len(results),
            relevant=len(relevant_results),
            tokens_used=response.tokens_used,
        )

        sources = [
            Source(
                page_number=r.record.metadata.page_number,
                excerpt=make_excerpt(r.record.text, self._config.excerpt_length),
                similarity=r.similarity
            )
            for r in relevant_results
        ]
        return RAGAnswer(
            answer=response.content,
            sources=sources,
            tokens_used=response.tokens_used
        )

    def semantic_search(self, query: str, top_k: Optional[int] = None,
                        document_id: Optional[str] = None) -> List[SearchResult]:
        """
        Поиск по документу без генерации ответа.

        Raises:
            NotIndexedError: Если документ не проиндексирован
        """
        expected_id = self._require_indexed(document_id)
        results = self._store.search(
            query, top_k or self._config.search_top_k, self._embedder, self._track_tokens
        )
        self._check_results(results, expected_id)
        return results

    def clear(self) -> None:
        """Сброс индекса и id документа."""
        self._indexer.clear()

    def _require_indexed(self, document_id: Optional[str]) -> str:
        if self._indexer.is_running:
            raise NotIndexedError("Документ индексируется. Дождитесь окончания индексации.")
        if not self.is_document_indexed(document_id):
            raise NotIndexedError("Документ не проиндексирован. Сначала выполните индексацию.")
        return document_id or self.get_document_id()

    def _check_results(self, results: List[SearchResult], expected_id: str) -> None:
        """Индекс мог смениться, пока вычислялся эмбединг запроса."""
        if self._indexer.is_running or not self.is_document_indexed(expected_id) or any(
            r.record.metadata.document_id != expected_id for r in results
        ):
            raise NotIndexedError(
                "Индекс документа изменился во время запроса. Повторите вопрос."
            )

    def _track_tokens(self, tokens: int) -> None:
        if self._on_tokens_used is not None and tokens:
            self._on_tokens_used(tokens)
