"""
Structured JSON logging for the order service.

One JSON object per line on stdout, with the request/user context of the
current request attached so that a payment verification can be traced from
the inbound request through the gateway call to the notification fan-out.
"""

import logging
import os
import re
import sys
import json
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REDACTED = "***REDACTED***"

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

class StructuredFormatter(logging.Formatter):
    """Render a log record as a single JSON document."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'orders-service'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
        }

        trace_context = self._get_trace_context()
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        return json.dumps(log_obj, default=str)

    def _get_trace_context(self) -> Optional[Dict[str, Any]]:
        context = {}
        request_id = request_id_var.get()
        if request_id:
            context["request_id"] = request_id
        user_id = user_id_var.get()
        if user_id:
            context["user_id"] = user_id
        return context or None

class SecurityFilter(logging.Filter):
    """
    Redact credentials and payment secrets.

    ``extra_fields`` entries whose key names a secret are replaced wholesale.
    In the message only the value of a ``key=value`` or ``key: value`` pair is
    replaced, so "Payment signature mismatch" is left as written.
    """

    SENSITIVE_FIELDS = (
        'password', 'token', 'api_key', 'secret', 'signature',
        'authorization', 'cookie', 'p256dh', 'auth_key',
    )
    VALUE_PATTERN = re.compile(
        r"(?P<key>\b\w*(?:%s)\w*\b)(?P<sep>\s*[=:]\s*)(?P<value>(?:Bearer\s+)?[^\s,;&]+)"
        % "|".join(SENSITIVE_FIELDS),
        re.IGNORECASE,
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.VALUE_PATTERN.sub(rf"\g<key>\g<sep>{REDACTED}", record.msg)
        custom = getattr(record, 'extra_fields', None)
        if isinstance(custom, dict):
            record.extra_fields = {
                key: (REDACTED if self._is_sensitive(key) else value)
                for key, value in custom.items()
            }
        return True

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(field in lowered for field in self.SENSITIVE_FIELDS)

def setup_logging(service_name: str, level: str = "INFO") -> None:
    """Send JSON records for every logger to stdout at ``level``."""
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(SecurityFilter())
    root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    # httpx logs full URLs at INFO, including provider payment ids
    logging.getLogger('httpx').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level}}
    )

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request once it completes and tags the response with ``X-Request-ID``."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(request_id=request_id)

        logger = get_logger(__name__)
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'duration_ms': round((time.time() - start_time) * 1000, 2),
                }}
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={'extra_fields': {
                'method': request.method,
                'path': request.url.path,
                'status_code': response.status_code,
                'duration_ms': round((time.time() - start_time) * 1000, 2),
                'client_host': request.client.host if request.client else None,
            }}
        )
        response.headers['X-Request-ID'] = request_id
        return response
