"""
Системный промпт для ответов по документу.

Содержит:
- Инструкцию отвечать только по контексту документа
- Фиксированную фразу для случая, когда ответа в контексте нет
- Требование ссылаться на номера страниц
- Опциональное указание языка ответа

Шаблон промпта загружается из файла rag_system_prompt.txt
"""

import os
from typing import List, Optional, Sequence

from ..config import DEFAULT_NOT_FOUND_PHRASE
from ..llm_client import ChatMessage


def _load_prompt_from_file(filename: str) -> str:
    """
    Загрузка шаблона промпта из текстового файла.

    Args:
        filename: Имя файла относительно директории prompts

    Returns:
        Содержимое файла как строка

    Raises:
        FileNotFoundError: Если файл не найден
    """
    prompts_dir = os.path.dirname(os.path.abspath(__file__))
    file_path = os.path.join(prompts_dir, filename)

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return f.read().strip()
    except FileNotFoundError:
        raise FileNotFoundError(f"Файл системного промпта не найден: {file_path}")


RAG_SYSTEM_PROMPT_TEMPLATE = _load_prompt_from_file("rag_system_prompt.txt")


def get_rag_system_prompt(not_found_phrase: str = DEFAULT_NOT_FOUND_PHRASE,
                          language: Optional[str] = None) -> str:
    """
    Получение системного промпта для ответа по контексту.

    Args:
        not_found_phrase: Фраза, которой модель сообщает об отсутствии ответа
        language: Язык ответа (None - язык не навязывается)

    Returns:
        Готовый системный промпт
    """
    prompt = RAG_SYSTEM_PROMPT_TEMPLATE.format(not_found_phrase=not_found_phrase)
    if language:
        prompt += f"\nВсегда отвечай на языке: {language}."
    return prompt


def format_user_turn(question: str, context: str) -> str:
    """Последнее сообщение пользователя: контекст документа и вопрос."""
    return f"Контекст из документа:\n{context}\n\nВопрос: {question}"


def build_rag_messages(question: str, context: str,
                       history: Sequence[ChatMessage] = (),
                       language: Optional[str] = None,
                       not_found_phrase: str = DEFAULT_NOT_FOUND_PHRASE) -> List[ChatMessage]:
    """
    Сборка сообщений для генерации ответа.

    Порядок: системная инструкция, история диалога, вопрос с контекстом.
    Системные сообщения из истории отбрасываются.
    """
    messages = [ChatMessage("system", get_rag_system_prompt(not_found_phrase, language))]
    messages.extend(m for m in history if m.role != "system")
    messages.append(ChatMessage("user", format_user_turn(question, context)))
    return messages
