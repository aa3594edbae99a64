"""
Модуль конфигурации.

Отвечает за:
- Загрузку конфигурации из YAML файла
- Преобразование секций в dataclass'ы с значениями по умолчанию
- Подстановку API ключей из переменных окружения
- Настройку логирования (structlog поверх stdlib logging)
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

import yaml
import structlog

from .errors import ConfigurationError


DEFAULT_CONFIG_PATH = os.path.join("config", "docrag.yaml")
CONFIG_ENV_VAR = "DOCRAG_CONFIG"

DEFAULT_NOT_FOUND_PHRASE = "Не удалось найти эту информацию в документе."

_API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class RAGConfig:
    """Параметры индексации и поиска."""
    chunk_size: int = 500
    chunk_overlap: int = 50
    top_k: int = 5
    min_similarity: float = 0.3
    search_top_k: int = 10
    excerpt_length: int = 200
    requests_per_second: float = 10.0
    max_concurrency: int = 1
    not_found_phrase: str = DEFAULT_NOT_FOUND_PHRASE

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Проверка согласованности параметров.

        Raises:
            ConfigurationError: При некорректных значениях
        """
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size должен быть > 0: {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ConfigurationError(
                f"chunk_overlap ({self.chunk_overlap}) должен быть в диапазоне "
                f"[0, chunk_size={self.chunk_size})"
            )
        if self.top_k < 1 or self.search_top_k < 1:
            raise ConfigurationError("top_k и search_top_k должны быть >= 1")
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ConfigurationError(
                f"min_similarity должен быть в диапазоне [0, 1]: {self.min_similarity}"
            )
        if self.requests_per_second < 0:
            raise ConfigurationError("requests_per_second не может быть отрицательным")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency должен быть >= 1")

    def with_overrides(self, **overrides: Any) -> "RAGConfig":
        """
        Копия конфигурации с частичной заменой полей.

        Raises:
            ConfigurationError: При неизвестном поле или некорректном значении
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Неизвестные параметры RAG: {sorted(unknown)}")
        _check_types(RAGConfig, overrides, "rag")
        return replace(self, **overrides)


@dataclass
class EmbeddingConfig:
    """Конфигурация провайдера эмбедингов."""
    provider: str = "openai"
    model_name: str = "text-embedding-3-small"
    api_key: str = ""
    host: str = "localhost"
    port: int = 11434
    endpoint: str = "/api/embeddings"
    base_url: str = "https://api.openai.com/v1"
    timeout: int = 30
    retry_attempts: int = 3


@dataclass
class ChatConfig:
    """Конфигурация провайдера генерации."""
    provider: str = "openai"
    model_name: str = "gpt-4o-mini"
    api_key: str = ""
    host: str = "localhost"
    port: int = 11434
    base_url: str = ""
    max_tokens: int = 2048
    temperature: float = 0.7
    timeout: int = 120


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class AppConfig:
    """Полная конфигурация приложения."""
    rag: RAGConfig = field(default_factory=RAGConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    generation: ChatConfig = field(default_factory=ChatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_yaml(config_path: str) -> dict:
    """
    Загрузка конфигурации из YAML файла.

    Args:
        config_path: Путь к файлу конфигурации

    Returns:
        Словарь с конфигурацией (пустой для пустого файла)

    Raises:
        FileNotFoundError: Если файл не найден
        ConfigurationError: Если ошибка парсинга YAML или корень не словарь
    """
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Ошибка разбора YAML в {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Корень конфигурации {config_path} должен быть словарём")
    return data


def _check_types(cls, data: Dict[str, Any], section: str) -> None:
    """
    Проверка типов значений по аннотациям полей dataclass'а.

    int допускается для float полей; bool не считается int.

    Raises:
        ConfigurationError: Если тип значения не совпадает с типом поля
    """
    types = {f.name: f.type for f in fields(cls)}
    for name, value in data.items():
        expected = types.get(name)
        if expected is None:
            continue
        if expected is float:
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif expected is int:
            valid = isinstance(value, int) and not isinstance(value, bool)
        else:
            valid = isinstance(value, expected)
        if not valid:
            raise ConfigurationError(
                f"Параметр '{section}.{name}' должен иметь тип {expected.__name__}, "
                f"получено {type(value).__name__}: {value!r}"
            )


def _build_section(cls, data: Optional[Dict[str, Any]], section: str):
    """Создание dataclass'а секции с проверкой неизвестных ключей."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Секция '{section}' должна быть словарём")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Неизвестные ключи в секции '{section}': {sorted(unknown)}"
        )
    # Пустое значение в YAML означает значение по умолчанию
    data = {k: v for k, v in data.items() if v is not None}
    _check_types(cls, data, section)
    return cls(**data)


def _apply_env_api_key(config) -> None:
    """Подстановка API ключа из окружения, если в файле он пуст."""
    if config.api_key:
        return
    env_var = _API_KEY_ENV_VARS.get(config.provider.lower())
    if env_var:
        config.api_key = os.getenv(env_var, "")


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    """
    Построение AppConfig из словаря (содержимого YAML).

    Args:
        data: Словарь с секциями rag, embedding, generation, logging

    Returns:
        Заполненная конфигурация

    Raises:
        ConfigurationError: При неизвестных ключах или некорректных значениях
    """
    config = AppConfig(
        rag=_build_section(RAGConfig, data.get("rag"), "rag"),
        embedding=_build_section(EmbeddingConfig, data.get("embedding"), "embedding"),
        generation=_build_section(ChatConfig, data.get("generation"), "generation"),
        logging=_build_section(LoggingConfig, data.get("logging"), "logging"),
    )
    _apply_env_api_key(config.embedding)
    _apply_env_api_key(config.generation)
    return config


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Загрузка конфигурации приложения.

    Порядок выбора файла: аргумент, переменная DOCRAG_CONFIG,
    config/docrag.yaml. Если файла по умолчанию нет - используются
    значения по умолчанию.

    Args:
        config_path: Явный путь к YAML файлу

    Returns:
        Конфигурация приложения
    """
    path = config_path or os.getenv(CONFIG_ENV_VAR)
    if path is None:
        if not os.path.exists(DEFAULT_CONFIG_PATH):
            return config_from_dict({})
        path = DEFAULT_CONFIG_PATH
    return config_from_dict(load_yaml(path))


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Настройка structlog поверх стандартного logging.

    Args:
        level: Уровень логирования (DEBUG, INFO, ...)
        json: Выводить JSON вместо человекочитаемого формата
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )
    renderer = (
        structlog.processors.JSONRenderer() if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
