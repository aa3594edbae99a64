"""
Модуль сегментации текста.

Отвечает за:
- Извлечение текста страниц документа и нормализацию пробелов
- Разбиение текста на перекрывающиеся чанки по границам предложений
- Учёт страниц без текстового слоя (сканы)
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

import structlog

from .documents import DocumentSource


logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 50

# Символы, после которых допустимо разрезать текст
SENTENCE_TERMINALS = (".", "\n")

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TextChunk:
    """Чанк текста страницы."""
    chunk_id: str
    text: str
    page_number: int
    start_offset: int  # Смещение начала в нормализованном тексте страницы
    end_offset: int


@dataclass
class ExtractionResult:
    """Результат извлечения и разбиения документа."""
    chunks: List[TextChunk]
    total_pages: int
    total_characters: int
    empty_pages: List[int] = field(default_factory=list)

    @property
    def has_text(self) -> bool:
        """True если в документе есть хотя бы один символ текста."""
        return self.total_characters > 0


def normalize_whitespace(text: str) -> str:
    """Схлопывание последовательностей пробельных символов и обрезка краёв."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_spans(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
                overlap: int = DEFAULT_OVERLAP) -> List[Tuple[int, int]]:
    """
    Вычисление границ чанков.

    Args:
        text: Исходный текст
        chunk_size: Максимальный размер чанка в символах
        overlap: Перекрытие соседних чанков в символах

    Returns:
        Список пар (start, end), text[start:end] - текст чанка

    Алгоритм:
    - Текст не длиннее chunk_size - один чанк
    - Окно [start, start + chunk_size): ищем последний терминальный символ
      во второй половине окна и режем сразу после него
    - Если терминала нет - режем по жёсткой границе окна
    - Следующее окно начинается с (end - overlap)
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size должен быть > 0: {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise ValueError(
            f"Overlap ({overlap}) должен быть меньше размера чанка ({chunk_size})"
        )

    length = len(text)
    if length == 0:
        return []
    if length <= chunk_size:
        return [(0, length)]

    spans: List[Tuple[int, int]] = []
    start = 0
    while start < length:
        end = start + chunk_size
        if end >= length:
            spans.append((start, length))
            break

        # Ищем границу предложения только во второй половине окна
        search_from = start + chunk_size // 2 + 1
        break_point = max(text.rfind(ch, search_from, end) for ch in SENTENCE_TERMINALS)
        if break_point != -1:
            end = break_point + 1

        spans.append((start, end))
        start = max(end - overlap, start + 1)
    return spans


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
               overlap: int = DEFAULT_OVERLAP) -> List[str]:
    """Разбиение текста на перекрывающиеся чанки (только тексты)."""
    return [text[start:end] for start, end in split_spans(text, chunk_size, overlap)]


def extract_page_texts(document: DocumentSource) -> List[str]:
    """
    Извлечение нормализованного текста всех страниц по порядку.

    Raises:
        ExtractionError: Если текст одной из страниц получить не удалось
    """
    return [
        normalize_whitespace(document.get_page_text(page_number))
        for page_number in range(1, document.get_page_count() + 1)
    ]


def extract_and_chunk(document: DocumentSource,
                      chunk_size: int = DEFAULT_CHUNK_SIZE,
                      overlap: int = DEFAULT_OVERLAP) -> ExtractionResult:
    """
    Извлечение текста документа и разбиение на чанки с метаданными страниц.

    Args:
        document: Источник текста
        chunk_size: Размер чанка в символах
        overlap: Перекрытие между чанками

    Returns:
        ExtractionResult с чанками, числом страниц и символов

    Note:
        Страницы без текста пропускаются и перечисляются в empty_pages.
        ID чанков возрастают в пределах документа: chunk_0, chunk_1, ...
    """
    page_texts = extract_page_texts(document)
    chunks: List[TextChunk] = []
    empty_pages: List[int] = []
    total_characters = 0

    for page_number, page_text in enumerate(page_texts, 1):
        total_characters += len(page_text)
        if not page_text:
            empty_pages.append(page_number)
            continue

        for start, end in split_spans(page_text, chunk_size, overlap):
            chunks.append(TextChunk(
                chunk_id=f"chunk_{len(chunks)}",
                text=page_text[start:end],
                page_number=page_number,
                start_offset=start,
                end_offset=end
            ))

    if empty_pages:
        logger.info(
            "pages_without_text",
            empty_pages=empty_pages,
            total_pages=len(page_texts),
        )

    return ExtractionResult(
        chunks=chunks,
        total_pages=len(page_texts),
        total_characters=total_characters,
        empty_pages=empty_pages
    )


def get_page_text(document: DocumentSource, page_numbers: Iterable[int]) -> str:
    """
    Полный текст выбранных страниц с метками.

    Args:
        document: Источник текста
        page_numbers: Номера страниц (некорректные номера пропускаются)

    Returns:
        Строка вида "[Страница N]\\n<текст>", блоки разделены пустой строкой
    """
    page_count = document.get_page_count()
    parts = []
    for page_number in page_numbers:
        if 1 <= page_number <= page_count:
            text = normalize_whitespace(document.get_page_text(page_number))
            parts.append(f"[Страница {page_number}]\n{text}")
    return "\n\n".join(parts)
