"""Transient user-visible notices."""

from collections import deque
import logging

from .models import Notice

logger = logging.getLogger(__name__)


class NoticeBoard:
    """Collects notices until a surface drains them."""

    def __init__(self, max_notices: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=max_notices)

    def success(self, message: str) -> Notice:
        logger.info(f"Notice: {message}")
        return self._post(Notice(level="success", message=message))

    def error(self, message: str) -> Notice:
        logger.warning(f"Notice: {message}")
        return self._post(Notice(level="error", message=message))

    def _post(self, notice: Notice) -> Notice:
        self._notices.append(notice)
        return notice

    def pending(self) -> list[Notice]:
        return list(self._notices)

    def drain(self) -> list[Notice]:
        """Return and forget all pending notices."""
        notices = list(self._notices)
        self._notices.clear()
        return notices
