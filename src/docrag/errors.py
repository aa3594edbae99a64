"""
Иерархия ошибок движка вопросов по документу.

Категории:
    - ConfigurationError: провайдер не настроен или конфигурация некорректна
    - ProviderError: ошибка бэкенда эмбедингов или генерации
    - ExtractionError: не удалось получить текст страницы
    - PreconditionError: операция вызвана в неподходящем состоянии
    - IndexingCancelledError: индексация отменена вызывающей стороной
"""


class DocRAGError(Exception):
    """Базовый класс всех ошибок пакета."""
    pass


class ConfigurationError(DocRAGError):
    """Провайдер не настроен или параметры конфигурации некорректны."""
    pass


class ProviderError(DocRAGError):
    """Ошибка внешнего провайдера (сеть, лимиты, неверный ответ)."""
    pass


class ExtractionError(DocRAGError):
    """Не удалось извлечь текст страницы документа."""

    def __init__(self, message: str, page_number: int = None) -> None:
        super().__init__(message)
        self.page_number = page_number


class PreconditionError(DocRAGError):
    """Операция вызвана в неподходящем состоянии."""
    pass


class NotIndexedError(PreconditionError):
    """Документ не проиндексирован (или проиндексирован другой документ)."""
    pass


class IndexingInProgressError(PreconditionError):
    """Индексация уже выполняется."""
    pass


class DimensionMismatchError(PreconditionError):
    """Размерность эмбединга не совпадает с размерностью хранилища."""
    pass


class DocumentMismatchError(PreconditionError):
    """Запись относится к другому документу, чем хранилище."""
    pass


class IndexingCancelledError(DocRAGError):
    """Индексация отменена."""
    pass
