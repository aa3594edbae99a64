"""
Модуль системных промптов для LLM.

Содержит:
    - RAG_SYSTEM_PROMPT_TEMPLATE: Шаблон инструкции для ответов по документу
    - get_rag_system_prompt(): Промпт с фразой "не найдено" и языком ответа
    - build_rag_messages(): Сборка списка сообщений для генерации
"""

from .system_prompt import (
    RAG_SYSTEM_PROMPT_TEMPLATE,
    build_rag_messages,
    format_user_turn,
    get_rag_system_prompt,
)

__all__ = [
    "RAG_SYSTEM_PROMPT_TEMPLATE",
    "build_rag_messages",
    "format_user_turn",
    "get_rag_system_prompt",
]
