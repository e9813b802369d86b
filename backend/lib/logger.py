"""
Logging Utility for the Tutor Backend

Colour-coded console logging plus a small structured logger for
request/response lines, sections and key/value payloads.
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with level colours and per-component icons."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last part of the logger name
    COMPONENT_ICONS = {
        'main': '🌐',
        'turn_orchestrator': '🎓',
        'session_manager': '💾',
        'curriculum_store': '📚',
        'llm_client': '🤖',
        'mastery_tracker': '📈',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, timestamp_color, bold = Colors.RESET, Colors.TIMESTAMP, Colors.BOLD
        else:
            level_color = reset = timestamp_color = bold = ''

        formatted = (
            f"{timestamp_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger wrapper that renders payload dicts under the message."""

    MAX_LIST_ITEMS = 5

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _format_data(self, data: Any, indent: int = 2) -> str:
        pad = ' ' * indent
        if isinstance(data, dict):
            lines = [f"{pad}{key}: {self._format_data(value, indent + 2)}" for key, value in data.items()]
            return "{\n" + "\n".join(lines) + f"\n{' ' * (indent - 2)}}}"
        if isinstance(data, list):
            return self._format_list(data, indent)
        return str(data)

    def _format_list(self, data: List[Any], indent: int) -> str:
        shown = data[:self.MAX_LIST_ITEMS]
        items = ", ".join(self._format_data(item, indent + 2) for item in shown)
        if len(data) > self.MAX_LIST_ITEMS:
            items += f", ... ({len(data)} items total)"
        return f"[{items}]"

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, **kwargs):
        if data:
            message = f"{message}\n{self._format_data(data)}"
        self.logger.log(level, message, **kwargs)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a separated block with a title."""
        separator = "=" * 60
        self._log(logging.INFO, f"\n{separator}\n📋 {title.upper()}\n{separator}", data)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log error message with exception and optional data."""
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Log incoming request."""
        request_data = {
            "user_id": user_id[:20] + "..." if user_id and len(user_id) > 20 else user_id,
        }
        if data:
            request_data.update(data)
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", request_data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log response."""
        response_data = {
            "duration_ms": f"{duration * 1000:.2f}" if duration is not None else None,
        }
        if data:
            response_data.update(data)
        self._log(logging.INFO, f"📤 RESPONSE: {status} {path}", response_data)


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the coloured console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
