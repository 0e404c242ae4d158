"""
Logging setup for the directory client.

Configures the root logger from the 'logging' configuration section: a log
file in log_dir (rotated at midnight when rotation is 'daily'), optional
console output, and a filter that masks credentials before anything is
written. Also provides the security audit logger used for authentication
and password events.
"""

import glob
import logging
import logging.handlers
import os
import re
import sys
import time
from typing import Any, Dict, List, Optional, Pattern, Tuple

LOG_FILE_NAME = 'directory.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
FILE_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '%(asctime)s %(levelname)-8s %(name)s - %(message)s'
CONSOLE_DATE_FORMAT = '%H:%M:%S'

ROTATING_MODES = ('daily', 'midnight')


def _level(name: Any, default: int) -> int:
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


class SensitiveDataFilter(logging.Filter):
    """Mask credential values in log messages."""

    SENSITIVE_KEYWORDS = (
        'new_password', 'bind_password', 'password', 'unicodePwd', 'pwd',
        'pass', 'secret', 'token', 'credential'
    )

    def __init__(self, name: str = ''):
        super().__init__(name)
        self.patterns = self._compile(self.SENSITIVE_KEYWORDS)

    @staticmethod
    def _compile(keywords) -> List[Tuple[Pattern, str]]:
        patterns = []
        for keyword in keywords:
            key = re.escape(keyword)
            # password=value
            patterns.append((re.compile(rf'({key}\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****'))
            # "password": "value" and "password": value
            patterns.append((re.compile(rf'("{key}"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1****\2'))
            patterns.append((re.compile(rf'("{key}"\s*:\s*)[^"\s,}}\]]+', re.IGNORECASE), r'\1****'))
            # 'password': 'value'
            patterns.append((re.compile(rf"('{key}'\s*:\s*')[^']*(')", re.IGNORECASE), r'\1****\2'))
        return patterns

    def scrub(self, text: str) -> str:
        for pattern, replacement in self.patterns:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.scrub(record.msg)
        return True


class LoggingManager:
    """
    Owns the handlers installed on the root logger.

    setup_logging only takes effect once; call reset() first to apply a
    different configuration.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7
        self.handlers = []

    def setup_logging(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Install file and console handlers on the root logger.

        Args:
            config: Logging configuration section; missing keys use defaults
        """
        if self.configured:
            return

        config = config or {}
        level = _level(config.get('level', 'INFO'), logging.INFO)
        self.log_dir = self._prepare_log_dir(config.get('log_dir', 'logs'))
        self.retention_days = config.get('retention_days', 7)

        scrubber = SensitiveDataFilter()

        file_handler = self._file_handler(str(config.get('rotation', 'daily')))
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        self.handlers = [file_handler]

        if config.get('console_output', True):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(_level(config.get('console_level', 'WARNING'), logging.WARNING))
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT))
            self.handlers.append(console_handler)

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(level)
        for handler in self.handlers:
            handler.addFilter(scrubber)
            root_logger.addHandler(handler)

        removed = self._remove_expired_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging to {os.path.join(self.log_dir, LOG_FILE_NAME)} at {logging.getLevelName(level)}; "
            f"{removed} expired log file(s) removed"
        )

    def reset(self) -> None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers = []
        self.configured = False

    def _prepare_log_dir(self, log_dir: str) -> str:
        """Create the log directory, falling back to the working directory."""
        try:
            os.makedirs(log_dir, exist_ok=True)
            return log_dir
        except OSError as e:
            print(f"Warning: cannot create log directory {log_dir} ({e}), logging to '.'", file=sys.stderr)
            return '.'

    def _file_handler(self, rotation: str) -> logging.Handler:
        path = os.path.join(self.log_dir, LOG_FILE_NAME)
        if rotation.lower() not in ROTATING_MODES:
            return logging.FileHandler(path, encoding='utf-8')

        handler = logging.handlers.TimedRotatingFileHandler(
            path, when='midnight', backupCount=self.retention_days, encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        return handler

    def _remove_expired_logs(self) -> int:
        """Delete rotated log files last modified before the retention window."""
        if self.retention_days <= 0:
            return 0

        cutoff = time.time() - self.retention_days * 86400
        removed = 0
        for path in self.get_log_files():
            if os.path.basename(path) == LOG_FILE_NAME:
                continue
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError as e:
                print(f"Warning: cannot remove expired log file {path}: {e}", file=sys.stderr)
        return removed

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))


_logging_manager = LoggingManager()


def setup_logging(config: Optional[Dict[str, Any]]) -> None:
    """Configure process-wide logging from the 'logging' configuration section."""
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    _logging_manager.reset()


class SecurityAuditLogger:
    """Audit trail for authentication and account changes, on the 'security' logger."""

    def __init__(self):
        self.logger = logging.getLogger('security')

    @staticmethod
    def _outcome(success: bool) -> str:
        return "SUCCESS" if success else "FAILURE"

    def log_authentication_attempt(self, username: str, success: bool):
        self.logger.info(f"Authentication {self._outcome(success)}: user={username}")

    def log_password_change(self, username: str, success: bool):
        self.logger.info(f"Password change {self._outcome(success)}: user={username}")

    def log_lockout_cleared(self, username: str):
        self.logger.info(f"Account lockout cleared: user={username}")

    def log_configuration_access(self, config_file: str):
        self.logger.info(f"Configuration read: {config_file}")


security_logger = SecurityAuditLogger()
