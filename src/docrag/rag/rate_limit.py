"""
Ограничение частоты вызовов провайдера.

TokenBucket выдаёт не более `rate` разрешений в секунду с запасом `burst`.
Потокобезопасен: может использоваться пулом потоков эмбединга.
"""

import threading
import time
from typing import Callable


class TokenBucket:
    """Лимитер по алгоритму token bucket."""

    def __init__(self, rate: float, burst: int = 1,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """
        Args:
            rate: Разрешений в секунду; 0 - без ограничения
            burst: Максимальный запас разрешений
            clock: Источник монотонного времени
            sleep: Функция ожидания
        """
        if rate < 0:
            raise ValueError(f"rate не может быть отрицательным: {rate}")
        if burst < 1:
            raise ValueError(f"burst должен быть >= 1: {burst}")
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._updated_at = clock()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """
        Получение одного разрешения, ожидая при необходимости.

        Returns:
            Время ожидания в секундах
        """
        if self._rate == 0:
            return 0.0

        with self._lock:
            now = self._clock()
            self._tokens = min(
                self._burst,
                self._tokens + (now - self._updated_at) * self._rate
            )
            self._updated_at = now
            self._tokens -= 1
            wait = -self._tokens / self._rate if self._tokens < 0 else 0.0

        if wait > 0:
            self._sleep(wait)
        return wait
