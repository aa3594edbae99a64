"""
DocRAG - вопросы к PDF документу на базе LLM.

Модули:
    - main: Точка входа и консольный интерфейс
    - service: Ответы на вопросы с источниками (RAG)
    - llm_client: Клиенты генерации (OpenAI, Anthropic, Ollama)
    - rag: Сегментация, эмбединги, векторное хранилище, индексация
    - prompts: Системные промпты для LLM
    - config: Загрузка конфигурации и настройка логирования
"""

__version__ = "1.0.0"
