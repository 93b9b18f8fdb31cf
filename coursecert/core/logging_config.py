"""
Logging Configuration
Structured logging with JSON format for centralized log management
"""
import inspect
import json
import logging
import logging.config
import sys
import time
import uuid
from datetime import datetime, timezone
from functools import wraps

from coursecert.core.config import settings


_EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "interview_id",
    "course_id",
    "feedback_id",
    "endpoint",
    "method",
    "status_code",
    "duration_ms",
    "operation",
    "provider",
    "error_code",
)


class CustomJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON"""
        log_record = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
            'application': 'coursecert-api',
            'environment': settings.environment,
        }

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def setup_logging(level: str | None = None) -> None:
    """
    Setup logging configuration
    """
    level = level or settings.log_level

    logging_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': CustomJSONFormatter,
            },
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': 'standard' if settings.debug else 'json',
                'stream': sys.stdout
            },
        },
        'loggers': {
            '': {  # Root logger
                'handlers': ['console'],
                'level': level,
                'propagate': False
            },
            'uvicorn': {
                'handlers': ['console'],
                'level': 'WARNING',
                'propagate': False
            },
            'sqlalchemy': {
                'handlers': ['console'],
                'level': 'WARNING',
                'propagate': False
            },
        }
    }

    logging.config.dictConfig(logging_config)
    logging.getLogger('startup').info(
        "Application logging initialized",
        extra={'operation': 'logging_initialized'}
    )


class RequestLoggingMiddleware:
    """
    Middleware to log all HTTP requests with structured data
    """

    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger('api.requests')

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        start_time = time.time()
        method = scope.get("method", "")
        path = scope.get("path", "")

        self.logger.info(
            "HTTP request started",
            extra={'request_id': request_id, 'method': method, 'endpoint': path}
        )

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration_ms = round((time.time() - start_time) * 1000, 2)

                log_level = logging.INFO
                if status_code >= 500:
                    log_level = logging.ERROR
                elif status_code >= 400:
                    log_level = logging.WARNING

                self.logger.log(
                    log_level,
                    "HTTP request completed",
                    extra={
                        'request_id': request_id,
                        'method': method,
                        'endpoint': path,
                        'status_code': status_code,
                        'duration_ms': duration_ms,
                    }
                )

            await send(message)

        await self.app(scope, receive, send_wrapper)


performance_logger = logging.getLogger('performance')


def log_performance(operation_name: str):
    """Decorator to log function performance"""
    def decorator(func):
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = round((time.time() - start_time) * 1000, 2)
                performance_logger.warning(
                    f"Operation failed: {operation_name}",
                    extra={'operation': operation_name, 'duration_ms': duration_ms, 'error_code': type(e).__name__}
                )
                raise
            duration_ms = round((time.time() - start_time) * 1000, 2)
            performance_logger.info(
                f"Operation completed: {operation_name}",
                extra={'operation': operation_name, 'duration_ms': duration_ms}
            )
            return result

        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = round((time.time() - start_time) * 1000, 2)
                performance_logger.warning(
                    f"Operation failed: {operation_name}",
                    extra={'operation': operation_name, 'duration_ms': duration_ms, 'error_code': type(e).__name__}
                )
                raise
            duration_ms = round((time.time() - start_time) * 1000, 2)
            performance_logger.info(
                f"Operation completed: {operation_name}",
                extra={'operation': operation_name, 'duration_ms': duration_ms}
            )
            return result

        if inspect.iscoroutinefunction(func):
            return wraps(func)(async_wrapper)
        return wraps(func)(sync_wrapper)

    return decorator
