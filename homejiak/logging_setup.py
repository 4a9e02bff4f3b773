import logging
import logging.handlers
import traceback
from pathlib import Path

from homejiak.config import config


class Logger:
    """Logging manager for the HomeJiak marketplace."""

    _instance = None
    _loggers = {}

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the logger if not already initialized."""
        if self._initialized:
            return

        self._log_config = config.log_config
        self._log_dir = Path(self._log_config['directory'])

        # Set up global logging configuration
        self._configure_root_logger()

        # Application logger
        self._app_logger = self.get_logger('homejiak')

        self._initialized = True

    def _level(self):
        level_name = self._log_config['level'].upper()
        return getattr(logging, level_name, logging.INFO)

    def _configure_root_logger(self):
        """Configure the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        # Remove existing handlers
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        if self._log_config['console_output']:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(self._log_config['format']))
            root_logger.addHandler(console_handler)

    def get_logger(self, name):
        """Get a logger with the specified name.

        The logger writes to a rotating ``<name>.log`` file in the configured
        log directory and propagates to the root (console) logger.

        Args:
            name: Name of the logger

        Returns:
            Configured logger instance
        """
        if name in self._loggers:
            return self._loggers[name]

        logger = logging.getLogger(name)
        logger.setLevel(self._level())

        # Remove existing handlers to prevent duplicates
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        if self._log_config['file_output']:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            log_file = self._log_dir / f"{name}.log"
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=self._log_config['max_size_mb'] * 1024 * 1024,
                backupCount=self._log_config['backup_count'],
                encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(self._log_config['format']))
            logger.addHandler(file_handler)

        self._loggers[name] = logger
        return logger

    def log_exception(self, logger_name, exception, message=None):
        """Log an exception with its stack trace.

        Args:
            logger_name: Logger name
            exception: Exception object
            message: Optional message to include
        """
        logger = self.get_logger(logger_name)

        if message:
            logger.error(f"{message}: {str(exception)}")
        else:
            logger.error(str(exception))

        logger.error("".join(traceback.format_exception(type(exception), exception, exception.__traceback__)))

    @property
    def app_logger(self):
        """Get the application logger."""
        return self._app_logger


# Global logger instance
logger = Logger()


def get_logger(name):
    """Get a logger with the specified name."""
    return logger.get_logger(name)


def log_exception(logger_name, exception, message=None):
    """Log an exception with its stack trace."""
    logger.log_exception(logger_name, exception, message)
