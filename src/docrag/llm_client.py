"""
Клиенты для генерации ответов LLM.

Поддерживает:
- OpenAI-совместимые API (chat/completions)
- Anthropic Messages API
- Локальные модели через Ollama

Клиенты не хранят историю: каждый вызов chat() получает полный
список сообщений с ролями system/user/assistant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
import structlog

from .config import ChatConfig
from .errors import ConfigurationError, ProviderError
from .rag.embeddings import estimate_tokens


logger = structlog.get_logger(__name__)

VALID_ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    """Сообщение диалога."""
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"Недопустимая роль сообщения: {self.role}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatResponse:
    """Ответ модели."""
    content: str
    tokens_used: int
    model: str


class BaseLLMClient(ABC):
    """
    Базовый абстрактный класс для LLM клиентов.

    Определяет общий интерфейс для всех реализаций.
    """

    name = "base"

    def __init__(self, config: ChatConfig) -> None:
        """
        Инициализация клиента.

        Args:
            config: Конфигурация провайдера генерации
        """
        self._config = config

    @abstractmethod
    def is_configured(self) -> bool:
        """True если клиент готов к вызовам."""
        pass

    @abstractmethod
    def _chat(self, messages: List[ChatMessage], max_tokens: int) -> ChatResponse:
        pass

    def chat(self, messages: List[ChatMessage],
             max_tokens: Optional[int] = None) -> ChatResponse:
        """
        Отправка списка сообщений в LLM.

        Args:
            messages: Сообщения с ролями system/user/assistant
            max_tokens: Ограничение длины ответа (по умолчанию из конфигурации)

        Returns:
            ChatResponse с текстом и числом токенов

        Raises:
            ConfigurationError: Если клиент не настроен (до сетевого вызова)
            LLMError: При ошибке провайдера
        """
        if not self.is_configured():
            raise ConfigurationError(f"Провайдер генерации '{self.name}' не настроен")
        return self._chat(messages, max_tokens or self._config.max_tokens)

    def validate(self) -> bool:
        """
        Проверка доступности модели пробным запросом.

        Returns:
            True если модель доступна и отвечает
        """
        try:
            self.chat([ChatMessage("user", "Hi")], max_tokens=1)
            return True
        except (ConfigurationError, ProviderError) as e:
            logger.warning("chat_provider_unavailable", provider=self.name, error=str(e))
            return False

    def _post(self, url: str, payload: Dict[str, Any],
              headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        POST запрос с единообразной обработкой ошибок.

        Raises:
            LLMConnectionError: При проблемах с подключением или таймауте
            AuthenticationError, RateLimitError, APIError: По HTTP коду ответа
        """
        try:
            response = requests.post(
                url,
                headers=headers,
                json=payload,
                timeout=self._config.timeout
            )
        except requests.exceptions.ConnectionError:
            raise LLMConnectionError(f"Не удалось подключиться к {self.name}: {url}")
        except requests.exceptions.Timeout:
            raise LLMConnectionError(f"Таймаут при генерации ответа ({self.name})")

        if response.status_code != 200:
            self._handle_api_error(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise LLMParseError(f"Ответ {self.name} не является JSON: {e}")

    def _handle_api_error(self, status_code: int, response_text: str) -> None:
        """
        Обработка ошибок API.

        Raises:
            AuthenticationError: При проблемах с API ключом
            RateLimitError: При превышении лимитов
            APIError: При других ошибках API
        """
        if status_code == 401:
            raise AuthenticationError(f"Неверный API ключ ({self.name})")
        elif status_code == 429:
            raise RateLimitError(f"Превышен лимит запросов ({self.name})")
        else:
            raise APIError(
                f"Ошибка API {self.name}: {status_code} - {response_text}",
                status_code=status_code
            )


class OpenAIChatClient(BaseLLMClient):
    """Клиент для OpenAI-совместимого chat/completions API."""

    name = "openai"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(self, config: ChatConfig) -> None:
        super().__init__(config)
        base_url = config.base_url or self.DEFAULT_BASE_URL
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json"
        }

    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    def _chat(self, messages: List[ChatMessage], max_tokens: int) -> ChatResponse:
        payload = {
            "model": self._config.model_name,
            "messages": [m.to_dict() for m in messages],
            "temperature": self._config.temperature,
            "max_tokens": max_tokens
        }
        data = self._post(self._url, payload, self._headers)

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMParseError(f"Неожиданный формат ответа OpenAI: {e}")
        tokens = (data.get("usage") or {}).get("total_tokens", 0)
        return ChatResponse(content=content, tokens_used=tokens, model=self._config.model_name)


class AnthropicChatClient(BaseLLMClient):
    """
    Клиент для Anthropic Messages API.

    Системное сообщение передаётся отдельным полем `system`.
    """

    name = "anthropic"
    DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"

    def __init__(self, config: ChatConfig) -> None:
        super().__init__(config)
        base_url = config.base_url or self.DEFAULT_BASE_URL
        self._url = f"{base_url.rstrip('/')}/messages"
        self._headers = {
            "x-api-key": config.api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json"
        }

    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    def _chat(self, messages: List[ChatMessage], max_tokens: int) -> ChatResponse:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: Dict[str, Any] = {
            "model": self._config.model_name,
            "max_tokens": max_tokens,
            "temperature": self._config.temperature,
            "messages": [m.to_dict() for m in messages if m.role != "system"]
        }
        if system:
            payload["system"] = system
        data = self._post(self._url, payload, self._headers)

        try:
            content = "".join(
                block.get("text", "") for block in data["content"]
                if block.get("type") == "text"
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise LLMParseError(f"Неожиданный формат ответа Anthropic: {e}")
        usage = data.get("usage") or {}
        tokens = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)
        return ChatResponse(content=content, tokens_used=tokens, model=self._config.model_name)


class LocalLLMClient(BaseLLMClient):
    """
    Клиент для локальных LLM моделей через Ollama.

    Поддерживает:
    - qwen3:8b и другие модели, доступные в Ollama
    - Chat completions через /api/chat endpoint
    """

    name = "ollama"

    def __init__(self, config: ChatConfig) -> None:
        super().__init__(config)
        self._base_url = config.base_url or f"http://{config.host}:{config.port}"
        self._url = f"{self._base_url.rstrip('/')}/api/chat"

    def is_configured(self) -> bool:
        return bool(self._config.model_name)

    def _chat(self, messages: List[ChatMessage], max_tokens: int) -> ChatResponse:
        payload = {
            "model": self._config.model_name,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
            "options": {
                "temperature": self._config.temperature,
                "num_predict": max_tokens
            }
        }
        data = self._post(self._url, payload)

        if "message" not in data:
            raise LLMParseError("Ответ Ollama API не содержит ключ 'message'")
        try:
            content = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise LLMParseError(f"Неожиданный формат ответа Ollama API: {e}")

        tokens = data.get("prompt_eval_count", 0) + data.get("eval_count", 0)
        if not tokens:
            prompt = "".join(m.content for m in messages)
            tokens = estimate_tokens(prompt + content)
        return ChatResponse(content=content, tokens_used=tokens, model=self._config.model_name)


_CLIENTS = {
    OpenAIChatClient.name: OpenAIChatClient,
    AnthropicChatClient.name: AnthropicChatClient,
    LocalLLMClient.name: LocalLLMClient,
}


def create_chat_provider(config: ChatConfig) -> BaseLLMClient:
    """
    Создание LLM клиента в зависимости от конфигурации.

    Args:
        config: Конфигурация генерации

    Returns:
        Экземпляр клиента (OpenAI, Anthropic или локальный)

    Raises:
        ConfigurationError: Если провайдер неизвестен
    """
    provider = config.provider.lower()
    if provider not in _CLIENTS:
        raise ConfigurationError(f"Неизвестный провайдер генерации: {config.provider}")
    return _CLIENTS[provider](config)


class LLMError(ProviderError):
    """Базовый класс ошибок LLM клиента."""
    pass


class LLMConnectionError(LLMError):
    """Ошибка подключения или таймаут."""
    pass


class AuthenticationError(LLMError):
    """Ошибка аутентификации (неверный API ключ)."""
    pass


class RateLimitError(LLMError):
    """Ошибка превышения лимита запросов."""
    pass


class APIError(LLMError):
    """Общая ошибка API."""

    def __init__(self, message: str, status_code: int = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMParseError(LLMError):
    """Неожиданный формат ответа."""
    pass
