"""
RAG (Retrieval-Augmented Generation) модуль.

Компоненты:
    - documents: Источники текста документа (текст, PDF)
    - segmenter: Извлечение текста страниц и разбиение на чанки
    - embeddings: Генерация эмбедингов через OpenAI или локальную LLM
    - vector_store: Хранилище в памяти и поиск по косинусному сходству
    - indexer: Индексация документа со стадиями и прогрессом
"""

from .documents import DocumentSource, TextDocument, PdfDocument
from .segmenter import TextChunk, ExtractionResult, chunk_text, extract_and_chunk
from .embeddings import EmbeddingProvider, EmbeddingResult, create_embedding_provider
from .vector_store import VectorStore, VectorRecord, SearchResult, cosine_similarity
from .indexer import (
    CancellationToken,
    DocumentIndexer,
    IndexingProgress,
    IndexingStage,
    IndexingSummary,
    IndexState,
)

__all__ = [
    "DocumentSource", "TextDocument", "PdfDocument",
    "TextChunk", "ExtractionResult", "chunk_text", "extract_and_chunk",
    "EmbeddingProvider", "EmbeddingResult", "create_embedding_provider",
    "VectorStore", "VectorRecord", "SearchResult", "cosine_similarity",
    "CancellationToken", "DocumentIndexer", "IndexingProgress",
    "IndexingStage", "IndexingSummary", "IndexState",
]
