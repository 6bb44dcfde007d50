"""
Logging setup for the archiver.

Extraction runs on worker threads, so file output goes through a
QueueHandler/QueueListener pair: worker threads only enqueue records and a
single listener thread writes them.
"""

import atexit
import logging
import logging.handlers
import queue
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] - %(name)s - %(message)s"
SHORT_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_installed_handlers: List[logging.Handler] = []


class QueuedFileHandler(logging.handlers.QueueHandler):
    """
    Queue-backed file handler.

    Records are passed unformatted to an unbounded queue; the listener thread
    formats and writes them, so no record is dropped under load.
    """

    def __init__(self, filename: Path, level: int = logging.NOTSET,
                 formatter: Optional[logging.Formatter] = None):
        log_queue = queue.Queue(maxsize=-1)
        super().__init__(log_queue)

        filename.parent.mkdir(parents=True, exist_ok=True)
        self.file_handler = logging.FileHandler(filename, mode='a', encoding='utf-8')
        self.file_handler.setFormatter(formatter or logging.Formatter(LOG_FORMAT))
        self.file_handler.setLevel(level)

        self.listener = logging.handlers.QueueListener(
            log_queue,
            self.file_handler,
            respect_handler_level=True
        )
        self.listener.start()
        atexit.register(self.cleanup)

    def cleanup(self) -> None:
        """Stop the listener and close the file. Safe to call more than once."""
        if self.listener is not None:
            self.listener.stop()
            self.listener = None
            self.file_handler.close()


def setup_thread_safe_logging(
    log_level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console_logging: bool = True,
    include_thread_name: bool = True
) -> None:
    """
    Configure the root logger.

    Handlers installed by an earlier call are replaced; handlers added by
    anything else are left alone.

    Args:
        log_level: Logging level (e.g., logging.INFO)
        log_file: Optional path to log file
        console_logging: Whether to log to stderr
        include_thread_name: Whether to include thread name in log format
    """
    formatter = logging.Formatter(LOG_FORMAT if include_thread_name else SHORT_LOG_FORMAT)

    shutdown_logging()
    root_logger = logging.getLogger()

    if console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        _installed_handlers.append(console_handler)

    if log_file:
        _installed_handlers.append(QueuedFileHandler(log_file, level=log_level, formatter=formatter))

    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    root_logger.setLevel(log_level)
    logging.getLogger("concurrent.futures").setLevel(logging.WARNING)


def shutdown_logging() -> None:
    """Flush queued file output and detach the handlers installed above."""
    root_logger = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        if isinstance(handler, QueuedFileHandler):
            handler.cleanup()
        else:
            handler.flush()
