import logging
import sys

_NOISY_LIBRARIES = ("httpx", "httpcore", "openai", "psycopg.pool")


class Log:
    """Process-wide logging facade for the worker and control surface."""

    _logger: logging.Logger = logging.getLogger("paperflow")

    @classmethod
    def configure(cls, log_level: str) -> None:
        """Set the level, attach a stdout handler once and quiet HTTP client chatter."""
        level = log_level.upper()
        cls._logger.setLevel(level)
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
            )
            cls._logger.addHandler(handler)
        if level != "DEBUG":
            for name in _NOISY_LIBRARIES:
                logging.getLogger(name).setLevel(logging.WARNING)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        cls._logger.debug(message, extra=kwargs)

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> None:
        """Log at error level with the active exception's traceback."""
        cls._logger.exception(message, extra=kwargs)

    @classmethod
    def for_document(cls, document_id: int) -> "DocumentLog":
        return DocumentLog(document_id)


class DocumentLog:
    """Prefixes every line with ``[doc:<id>]`` so one document can be grepped."""

    def __init__(self, document_id: int) -> None:
        self._prefix = f"[doc:{document_id}]"

    def info(self, message: str) -> None:
        Log.info(f"{self._prefix} {message}")

    def warning(self, message: str) -> None:
        Log.warning(f"{self._prefix} {message}")

    def error(self, message: str) -> None:
        Log.error(f"{self._prefix} {message}")

    def debug(self, message: str) -> None:
        Log.debug(f"{self._prefix} {message}")
