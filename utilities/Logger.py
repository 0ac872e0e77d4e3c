"""
Logger System for StyleLab
Console output plus optional per-entry-point log files
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from utilities.AppPaths import AppPaths


class Logger:
    """
    Class that handles named loggers and their file outputs
    """

    _configured_loggers = set()

    @staticmethod
    def setup_logger(
        log_file: Optional[str] = None,
        log_level: int = logging.INFO,
        logger_name: Optional[str] = None,
        format_string: Optional[str] = None
    ) -> logging.Logger:
        """
        Set up a logger with console and optional file logging.

        :param log_file: Name of the log file (optional). Bare names go to the logs directory.
        :param log_level: Logging level (default: INFO).
        :param logger_name: Name of the logger (default: based on log_file).
        :param format_string: Custom format string.
        :return: Configured logger instance.
        """
        if logger_name is None:
            logger_name = Path(log_file).stem if log_file else "StyleLab"

        logger = logging.getLogger(logger_name)

        if logger_name not in Logger._configured_loggers:
            logger.handlers.clear()
            logger.setLevel(log_level)

            if format_string is None:
                format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            formatter = logging.Formatter(format_string)

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

            if log_file:
                Logger.set_log_file(logger, log_file)

            # Prevent propagation to root logger to avoid duplicate messages
            logger.propagate = False

            Logger._configured_loggers.add(logger_name)

        return logger

    @staticmethod
    def set_log_file(logger: logging.Logger, log_file: str, log_dir: Optional[Path] = None) -> Path:
        """
        Send a logger's output to a log file, replacing any file it wrote to before.

        :param logger: Logger to update.
        :param log_file: File name, or a path when it contains a directory.
        :param log_dir: Directory for bare file names (default: the app logs directory).
        :return: Path of the log file.
        """
        log_file_path = Logger._resolve_log_path(log_file, log_dir)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
            logger.removeHandler(handler)
            handler.close()

        file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
        file_handler.setLevel(logger.level)
        if logger.handlers:
            file_handler.setFormatter(logger.handlers[0].formatter)
        logger.addHandler(file_handler)

        logger.debug(f"Logger '{logger.name}' configured with file output: {log_file_path}")
        return log_file_path

    @staticmethod
    def _resolve_log_path(log_file: str, log_dir: Optional[Path] = None) -> Path:
        if "/" in log_file or "\\" in log_file:
            return Path(log_file)
        return Path(log_dir) / log_file if log_dir else AppPaths().logs_dir / log_file

    @staticmethod
    def attach_library_loggers(logger: logging.Logger, names=("core", "data", "training")):
        """
        Route the library modules' loggers (named after their packages) through
        the handlers of an entry-point logger.

        :param logger: Configured entry-point logger.
        :param names: Top-level package logger names.
        """
        for name in names:
            library_logger = logging.getLogger(name)
            library_logger.setLevel(logger.level)
            library_logger.handlers = list(logger.handlers)
            library_logger.propagate = False

    @staticmethod
    def set_level_all(level: int):
        """
        Set logging level for all configured loggers.

        :param level: New logging level.
        """
        for logger_name in Logger._configured_loggers:
            logger = logging.getLogger(logger_name)
            logger.setLevel(level)
            for handler in logger.handlers:
                handler.setLevel(level)

    @staticmethod
    def list_loggers():
        return Logger._configured_loggers.copy()
