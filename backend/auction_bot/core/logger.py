"""Structured logging with sensitive data redaction."""

import logging
import json
import re
from datetime import datetime, timezone
import os
from auction_bot.core.config import settings

class SensitiveDataFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    SENSITIVE_PATTERNS = [
        (r'(password["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(passwd["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(authorization:\s*bearer\s+)(\S+)', r'\1***REDACTED***'),
        (r'(x-line-signature["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
    ]

    def _redact(self, value: str) -> str:
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            value = re.sub(pattern, replacement, value, flags=re.IGNORECASE)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from log message."""
        if isinstance(record.msg, str):
            record.msg = self._redact(record.msg)

        # Also redact from args if present
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True

class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    CUSTOM_FIELDS = [
        'user_id', 'action', 'step', 'policy', 'field', 'url', 'selector',
        'frame', 'status', 'duration_ms', 'kind', 'count', 'tried', 'frames',
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key in self.CUSTOM_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, ensure_ascii=False, default=str)

def setup_logger(
    name: str = "auction_bot",
    level: str = "INFO",
    log_file: str = None,
    json_format: bool = True
) -> logging.Logger:
    """
    Setup structured logger with sensitive data filtering.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging
        json_format: Whether to use JSON formatting

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.addFilter(SensitiveDataFilter())

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(getattr(logging, level.upper()))
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger

# Global logger instance
logger = setup_logger(
    name="auction_bot",
    level=settings.log_level,
    log_file=settings.log_file or None,
    json_format=True
)

def log_action(action: str, **kwargs):
    """
    Log a browser action with structured data.

    Args:
        action: Action type (navigate, click, type, resolve, extract, etc.)
        **kwargs: Additional context (url, selector, frame, status, duration_ms, etc.)
    """
    extra = {'action': action}
    extra.update(kwargs)

    status = kwargs.get('status', 'unknown')
    if status == 'success':
        logger.info(f"Action completed: {action}", extra=extra)
    elif status == 'error':
        logger.error(f"Action failed: {action}", extra=extra)
    else:
        logger.debug(f"Action: {action}", extra=extra)

def log_step(step: str, policy: str, status: str, duration_ms: int = None, **kwargs):
    """
    Log the result of one pipeline step.

    Args:
        step: Step name (authenticate, extract, ...)
        policy: Failure policy of the step (fatal/degrade)
        status: success, degraded or error
        duration_ms: Time spent in the step
        **kwargs: Additional context (user_id, kind, count, ...)
    """
    extra = {'step': step, 'policy': policy, 'status': status, 'duration_ms': duration_ms}
    extra.update(kwargs)

    if status == 'success':
        logger.info(f"Step completed: {step}", extra=extra)
    elif status == 'degraded':
        logger.warning(f"Step degraded: {step}", extra=extra)
    else:
        logger.error(f"Step failed: {step}", extra=extra)
