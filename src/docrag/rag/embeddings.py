"""
Модуль генерации эмбедингов.

Отвечает за:
- Единый интерфейс провайдера эмбедингов (EmbeddingProvider)
- Реализации для OpenAI API и локальной LLM (Ollama)
- Выбор реализации по конфигурации (create_embedding_provider)
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

import requests
import structlog

from ..config import EmbeddingConfig
from ..errors import ConfigurationError, ProviderError


logger = structlog.get_logger(__name__)


@dataclass
class EmbeddingResult:
    """Результат генерации эмбединга."""
    vector: List[float]
    tokens_used: int


def estimate_tokens(text: str) -> int:
    """Грубая оценка числа токенов для бэкендов без учёта usage."""
    return math.ceil(len(text) / 4)


class EmbeddingProvider(ABC):
    """
    Базовый интерфейс провайдера эмбедингов.

    Провайдер превращает строку в вектор фиксированной длины
    и сообщает стоимость вызова в токенах.
    """

    name = "base"

    @abstractmethod
    def is_configured(self) -> bool:
        """True если провайдер готов к вызовам."""
        pass

    @abstractmethod
    def _embed(self, text: str) -> EmbeddingResult:
        pass

    def embed(self, text: str) -> EmbeddingResult:
        """
        Генерация эмбединга для текста.

        Args:
            text: Текст для преобразования

        Returns:
            EmbeddingResult с вектором и числом токенов

        Raises:
            ConfigurationError: Если провайдер не настроен (до сетевого вызова)
            EmbeddingError: При ошибке провайдера
        """
        if not self.is_configured():
            raise ConfigurationError(
                f"Провайдер эмбедингов '{self.name}' не настроен"
            )
        return self._embed(text)

    def validate(self) -> bool:
        """
        Проверка доступности провайдера пробным вызовом.

        Returns:
            True если провайдер отвечает
        """
        try:
            self.embed("test")
            return True
        except (ConfigurationError, ProviderError) as e:
            logger.warning("embedding_provider_unavailable", provider=self.name, error=str(e))
            return False


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Эмбединги через OpenAI-совместимый endpoint /embeddings."""

    name = "openai"

    def __init__(self, config: EmbeddingConfig) -> None:
        self._config = config
        self._url = f"{config.base_url.rstrip('/')}/embeddings"
        self._headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json"
        }

    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    def _embed(self, text: str) -> EmbeddingResult:
        payload = {"model": self._config.model_name, "input": text}
        try:
            response = requests.post(
                self._url,
                headers=self._headers,
                json=payload,
                timeout=self._config.timeout
            )
        except requests.exceptions.ConnectionError:
            raise EmbeddingConnectionError("Не удалось подключиться к OpenAI")
        except requests.exceptions.Timeout:
            raise EmbeddingConnectionError("Таймаут запроса эмбединга к OpenAI")

        if response.status_code != 200:
            raise EmbeddingAPIError(
                f"Ошибка OpenAI embeddings API: {response.status_code} - {response.text}",
                status_code=response.status_code
            )
        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingParseError(f"Ответ OpenAI не является JSON: {e}")
        return self._parse_response(data, text)

    def _parse_response(self, response: dict, text: str) -> EmbeddingResult:
        try:
            vector = response["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingParseError(f"Неожиданный формат ответа OpenAI: {e}")
        usage = response.get("usage") or {}
        tokens = usage.get("total_tokens") or estimate_tokens(text)
        return EmbeddingResult(vector=vector, tokens_used=tokens)


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Генератор эмбедингов через локальную LLM (Ollama).

    Обеспечивает:
    - Подключение к локальной LLM
    - Повтор запросов с экспоненциальным backoff при ошибках подключения
    """

    name = "ollama"

    def __init__(self, config: EmbeddingConfig) -> None:
        """
        Инициализация генератора.

        Args:
            config: Конфигурация подключения к LLM
        """
        self._config = config
        self._base_url = f"http://{config.host}:{config.port}{config.endpoint}"

    def is_configured(self) -> bool:
        return bool(self._config.host and self._config.model_name)

    def _embed(self, text: str) -> EmbeddingResult:
        response = self._retry_with_backoff(self._send_request, text)
        vector = self._parse_embedding(response)
        return EmbeddingResult(vector=vector, tokens_used=estimate_tokens(text))

    def _send_request(self, text: str) -> dict:
        """
        Отправка запроса к API локальной LLM.

        Raises:
            EmbeddingConnectionError: При проблемах с подключением
            EmbeddingAPIError: При ответе с кодом, отличным от 200
        """
        payload = {
            "model": self._config.model_name,
            "prompt": text
        }

        try:
            response = requests.post(
                self._base_url,
                json=payload,
                timeout=self._config.timeout
            )
        except requests.exceptions.ConnectionError:
            raise EmbeddingConnectionError("Не удалось подключиться к LLM")
        except requests.exceptions.Timeout:
            raise EmbeddingConnectionError("Таймаут подключения к LLM")

        if response.status_code != 200:
            raise EmbeddingAPIError(
                f"Ошибка API: {response.status_code}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingParseError(f"Ответ LLM не является JSON: {e}")

    def _parse_embedding(self, response: dict) -> List[float]:
        """
        Извлечение эмбединга из ответа API.

        Raises:
            EmbeddingParseError: При неожиданном формате ответа
        """
        if "embedding" not in response:
            raise EmbeddingParseError("Отсутствует поле 'embedding' в ответе")
        return response["embedding"]

    def _retry_with_backoff(self, func: callable, *args, **kwargs):
        """
        Выполнение функции с retry и экспоненциальным backoff.

        Повторяются только ошибки подключения.

        Raises:
            EmbeddingConnectionError: После исчерпания попыток
        """
        max_attempts = max(1, self._config.retry_attempts)
        for attempt in range(max_attempts):
            try:
                return func(*args, **kwargs)
            except EmbeddingConnectionError as e:
                if attempt == max_attempts - 1:
                    raise
                wait_time = 2 ** attempt  # 1, 2, 4 секунды
                logger.warning(
                    "embedding_request_retry",
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                time.sleep(wait_time)


_PROVIDERS = {
    OpenAIEmbeddingProvider.name: OpenAIEmbeddingProvider,
    OllamaEmbeddingProvider.name: OllamaEmbeddingProvider,
}


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    Создание провайдера эмбедингов по конфигурации.

    Args:
        config: Конфигурация эмбедингов

    Returns:
        Экземпляр провайдера

    Raises:
        ConfigurationError: Если провайдер неизвестен или не поддерживает эмбединги
    """
    provider = config.provider.lower()
    if provider == "anthropic":
        raise ConfigurationError(
            "Anthropic не предоставляет API эмбедингов. "
            "Используйте OpenAI или Ollama."
        )
    if provider not in _PROVIDERS:
        raise ConfigurationError(f"Неизвестный провайдер эмбедингов: {config.provider}")
    return _PROVIDERS[provider](config)


class EmbeddingError(ProviderError):
    """Базовый класс ошибок генерации эмбедингов."""
    pass


class EmbeddingConnectionError(EmbeddingError):
    """Ошибка подключения к провайдеру."""
    pass


class EmbeddingAPIError(EmbeddingError):
    """Провайдер вернул ошибку."""

    def __init__(self, message: str, status_code: int = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmbeddingParseError(EmbeddingError):
    """Ошибка парсинга ответа."""
    pass
