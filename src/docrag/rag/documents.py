"""
Источники текста документа.

Отвечает за:
- Единый интерфейс доступа к тексту страниц (DocumentSource)
- Документы из памяти и текстовых файлов (TextDocument)
- PDF документы через pypdf (PdfDocument)
"""

from abc import ABC, abstractmethod
from typing import List

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..errors import ExtractionError


# Разделитель страниц в текстовых файлах
PAGE_BREAK = "\f"


class DocumentSource(ABC):
    """
    Базовый интерфейс источника текста.

    Страницы нумеруются с 1. Пустая строка - допустимый результат
    для страниц без текстового слоя (например, сканов).
    """

    @abstractmethod
    def get_page_count(self) -> int:
        """Количество страниц документа."""
        pass

    @abstractmethod
    def get_page_text(self, page_number: int) -> str:
        """
        Текст страницы.

        Args:
            page_number: Номер страницы (с 1)

        Raises:
            ExtractionError: Если текст страницы получить не удалось
        """
        pass

    def _check_page_number(self, page_number: int) -> None:
        if not 1 <= page_number <= self.get_page_count():
            raise ExtractionError(
                f"Страница {page_number} вне диапазона 1..{self.get_page_count()}",
                page_number=page_number
            )


class TextDocument(DocumentSource):
    """Документ, страницы которого уже доступны как строки."""

    def __init__(self, pages: List[str]) -> None:
        self._pages = list(pages)

    @classmethod
    def from_file(cls, file_path: str) -> "TextDocument":
        """
        Чтение текстового файла; страницы разделены символом form feed.

        Args:
            file_path: Путь к файлу

        Returns:
            Документ со страницами файла
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except UnicodeDecodeError:
            with open(file_path, 'r', encoding='latin-1') as f:
                content = f.read()
        return cls(content.split(PAGE_BREAK))

    def get_page_count(self) -> int:
        return len(self._pages)

    def get_page_text(self, page_number: int) -> str:
        self._check_page_number(page_number)
        return self._pages[page_number - 1]


class PdfDocument(DocumentSource):
    """PDF документ, текст извлекается через pypdf."""

    def __init__(self, file_path: str) -> None:
        """
        Открытие PDF файла.

        Args:
            file_path: Путь к PDF

        Raises:
            ExtractionError: Если файл не удалось прочитать как PDF
        """
        self._file_path = file_path
        try:
            self._reader = PdfReader(file_path)
        except (OSError, ValueError, PdfReadError) as e:
            raise ExtractionError(f"Не удалось открыть PDF {file_path}: {e}") from e

    def get_page_count(self) -> int:
        return len(self._reader.pages)

    def get_page_text(self, page_number: int) -> str:
        self._check_page_number(page_number)
        try:
            return self._reader.pages[page_number - 1].extract_text() or ""
        except Exception as e:
            raise ExtractionError(
                f"Ошибка извлечения текста со страницы {page_number}: {e}",
                page_number=page_number
            ) from e
