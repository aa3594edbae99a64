"""
Главный модуль приложения DocRAG.

Содержит точку входа и консольный интерфейс для вопросов
к одному документу.
"""

import argparse
import hashlib
import os
import sys
from typing import List, Optional

import structlog

from .config import AppConfig, load_config, setup_logging
from .errors import DocRAGError
from .llm_client import ChatMessage, create_chat_provider
from .rag.documents import DocumentSource, PdfDocument, TextDocument
from .rag.embeddings import create_embedding_provider
from .rag.indexer import IndexingProgress, IndexingStage
from .service import RAGAnswer, RAGService


logger = structlog.get_logger(__name__)

# Сколько последних сообщений диалога передавать в LLM
MAX_HISTORY_MESSAGES = 10


def load_document(file_path: str) -> DocumentSource:
    """
    Открытие документа по расширению файла.

    Args:
        file_path: Путь к .pdf или текстовому файлу

    Returns:
        Источник текста документа
    """
    if os.path.splitext(file_path)[1].lower() == ".pdf":
        return PdfDocument(file_path)
    return TextDocument.from_file(file_path)


def compute_document_id(file_path: str) -> str:
    """Идентификатор документа: SHA-1 содержимого файла."""
    digest = hashlib.sha1()
    with open(file_path, 'rb') as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


def format_progress(progress: IndexingProgress) -> str:
    """Строка прогресса для консоли."""
    if progress.stage == IndexingStage.EMBEDDING and progress.total:
        percent = progress.current * 100 // progress.total
        return f"[{percent:3d}%] {progress.message}"
    return progress.message


def format_answer(answer: RAGAnswer) -> str:
    """Ответ с перечнем страниц-источников."""
    if not answer.sources:
        return answer.answer
    pages = ", ".join(str(p) for p in answer.page_numbers)
    return f"{answer.answer}\n\nИсточники: стр. {pages}"


class DocumentAssistant:
    """
    Консольный ассистент для вопросов к документу.

    Координирует работу компонентов:
    - RAG сервис (индексация, поиск, ответы)
    - История диалога
    """

    def __init__(self, config: AppConfig, file_path: str,
                 language: Optional[str] = None) -> None:
        """
        Инициализация ассистента.

        Args:
            config: Конфигурация приложения
            file_path: Путь к документу
            language: Язык ответов
        """
        self._config = config
        self._file_path = file_path
        self._language = language
        self._history: List[ChatMessage] = []
        self._last_answer: Optional[RAGAnswer] = None
        self._total_tokens = 0

        embedder = create_embedding_provider(config.embedding)
        chat_client = create_chat_provider(config.generation)
        self._service = RAGService(
            embedder,
            chat_client,
            config=config.rag,
            on_tokens_used=self._add_token_usage
        )
        self._document = load_document(file_path)
        self._document_id = compute_document_id(file_path)

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    def index(self) -> str:
        """Индексация документа с выводом прогресса."""
        print(f"Индексация {self._file_path}...")
        summary = self._service.index_document(
            self._document,
            self._document_id,
            on_progress=lambda p: print(f"  {format_progress(p)}")
        )
        if not summary.has_text:
            return ("В документе нет текстового слоя - вероятно, это скан. "
                    "Распознайте текст (OCR) и повторите.")
        result = (f"Индексация завершена!\n"
                  f"Страниц: {summary.total_pages}\n"
                  f"Чанков: {summary.total_chunks}")
        if summary.empty_pages:
            pages = ", ".join(str(p) for p in summary.empty_pages)
            result += f"\nСтраницы без текста: {pages}"
        return result

    def start(self) -> None:
        """
        Запуск консольного интерфейса.

        Действия:
        - Проиндексировать документ
        - Запустить главный цикл обработки ввода
        """
        print(self.index())
        print("Введите вопрос или /help для справки.")

        while True:
            try:
                user_input = input("\n> ").strip()

                if not user_input:
                    continue

                response = self.process_input(user_input)

                if response:
                    print(f"\nAssistant: {response}")

            except (KeyboardInterrupt, EOFError):
                print("\n\nВыход из программы...")
                break
            except DocRAGError as e:
                print(f"\nОшибка: {e}")

    def process_input(self, user_input: str) -> Optional[str]:
        """
        Обработка ввода пользователя.

        Returns:
            Ответ ассистента или None для команд без ответа
        """
        if user_input.startswith('/'):
            return self.handle_command(user_input)
        return self.ask(user_input)

    def handle_command(self, command: str) -> Optional[str]:
        """
        Обработка команд пользователя.

        Поддерживаемые команды:
        - /search <текст> - семантический поиск без генерации
        - /sources - источники последнего ответа
        - /reindex - повторная индексация документа
        - /clear - очистка истории диалога
        - /help - справка по командам
        - /exit или /quit - выход из программы
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == '/search' and arg:
            return self._search(arg)
        elif cmd == '/sources':
            return self._format_sources()
        elif cmd == '/reindex':
            return self.index()
        elif cmd == '/clear':
            self._history.clear()
            return "История диалога очищена."
        elif cmd == '/help':
            self.print_help()
            return None
        elif cmd in ['/exit', '/quit']:
            print(f"Потрачено токенов: {self._total_tokens}. До свидания!")
            sys.exit(0)
        else:
            return f"Неизвестная команда: {cmd}. Введите /help для справки."

    def ask(self, question: str) -> str:
        """Вопрос к документу с учётом истории диалога."""
        answer = self._service.query(
            question,
            self._history[-MAX_HISTORY_MESSAGES:],
            language=self._language,
            document_id=self._document_id
        )
        self._last_answer = answer
        self._history.append(ChatMessage("user", question))
        self._history.append(ChatMessage("assistant", answer.answer))
        return format_answer(answer)

    def _search(self, query: str) -> str:
        results = self._service.semantic_search(query, document_id=self._document_id)
        if not results:
            return "Ничего не найдено."
        lines = []
        for i, result in enumerate(results, 1):
            excerpt = result.record.text[:120]
            lines.append(
                f"[{i}] стр. {result.record.metadata.page_number} "
                f"({result.similarity:.2f}): {excerpt}"
            )
        return "\n".join(lines)

    def _format_sources(self) -> str:
        if self._last_answer is None or not self._last_answer.sources:
            return "Источников нет."
        return "\n\n".join(
            f"[стр. {s.page_number}, {s.similarity * 100:.1f}%] {s.excerpt}"
            for s in self._last_answer.sources
        )

    def _add_token_usage(self, tokens: int) -> None:
        self._total_tokens += tokens

    def print_help(self) -> None:
        print("""
Доступные команды:

  /search <текст>
    Семантический поиск по документу без генерации ответа

  /sources
    Показывает источники последнего ответа

  /reindex
    Повторно индексирует документ

  /clear
    Очищает историю текущего диалога

  /help
    Показывает эту справку

  /exit или /quit
    Завершает работу программы

Для вопроса к документу просто введите его текст.
    """)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docrag",
        description="Вопросы к PDF или текстовому документу с помощью LLM"
    )
    parser.add_argument("file", help="Путь к документу (.pdf или текстовый файл)")
    parser.add_argument("--config", default=None, help="Путь к YAML конфигурации")
    parser.add_argument("--language", default=None, help="Язык ответов")
    parser.add_argument("--log-level", default=None, help="Уровень логирования")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Точка входа в приложение.

    Действия:
    - Загрузить конфигурацию и настроить логирование
    - Создать DocumentAssistant и запустить консольный интерфейс
    - Обработать исключения верхнего уровня
    """
    args = parse_args(argv)
    try:
        config = load_config(args.config)
        setup_logging(args.log_level or config.logging.level, config.logging.json)
        assistant = DocumentAssistant(config, args.file, language=args.language)
        assistant.start()
    except FileNotFoundError as e:
        print(f"Ошибка: файл не найден - {e}")
        sys.exit(1)
    except DocRAGError as e:
        logger.error("fatal_error", error=str(e), error_type=type(e).__name__)
        print(f"Ошибка: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
