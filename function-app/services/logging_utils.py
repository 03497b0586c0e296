"""
Logging utilities for the ConfigMgr software device services
Provides structured logging, operation timing and scoped quiet mode
"""

import logging
import threading
import time
import json
import traceback
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Dict, Any, Callable, Iterator, Sequence
from datetime import datetime
import azure.functions as func


# Loggers that chatter on every AdminService round trip
NOISY_LOGGERS = ('urllib3', 'azure', 'services.adminservice_client')

# Logger levels are process-wide: the first holder saves them, the last restores them
_quiet_lock = threading.Lock()
_quiet_holders: Dict[str, int] = {}
_quiet_saved_levels: Dict[str, int] = {}


class FunctionLogger:
    """Logger for Azure Functions with structured logging and request timing"""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)
        self.correlation_id = str(uuid.uuid4())
        self.request_start_time = None
        self.function_name = logger_name

    def start_request(self, req: func.HttpRequest, additional_context: Dict[str, Any] = None):
        """Log request start with detailed context"""
        self.request_start_time = time.time()

        if 'x-correlation-id' in req.headers:
            self.correlation_id = req.headers['x-correlation-id']
        elif 'x-ms-request-id' in req.headers:
            self.correlation_id = req.headers['x-ms-request-id']

        context = {
            'correlation_id': self.correlation_id,
            'function': self.function_name,
            'method': req.method,
            'url': req.url,
            'query_params': dict(req.params),
            'content_length': len(req.get_body()) if req.get_body() else 0,
            'user_agent': req.headers.get('User-Agent', 'Unknown'),
            'remote_addr': req.headers.get('X-Forwarded-For', 'Unknown'),
            'timestamp': datetime.utcnow().isoformat()
        }

        if additional_context:
            context.update(additional_context)

        try:
            if req.get_body():
                body = req.get_json()
                if body:
                    context['request_body'] = self._sanitize_request_body(body)
        except (ValueError, UnicodeDecodeError) as e:
            context['request_body_error'] = str(e)

        self.logger.info(f"REQUEST_START: {self.function_name}", extra={
            'custom_dimensions': context,
            'operation_id': self.correlation_id
        })

    def end_request(self, response: func.HttpResponse, additional_context: Dict[str, Any] = None):
        """Log request end with duration"""
        if self.request_start_time:
            duration = time.time() - self.request_start_time
        else:
            duration = 0

        context = {
            'correlation_id': self.correlation_id,
            'function': self.function_name,
            'status_code': response.status_code,
            'response_length': len(response.get_body()) if response.get_body() else 0,
            'duration_ms': round(duration * 1000, 2),
            'timestamp': datetime.utcnow().isoformat()
        }

        if additional_context:
            context.update(additional_context)

        if duration > 30:
            context['performance'] = 'SLOW'
        elif duration > 10:
            context['performance'] = 'MODERATE'
        else:
            context['performance'] = 'FAST'

        if response.status_code >= 400:
            try:
                context['error_details'] = json.loads(response.get_body())
            except ValueError:
                context['error_details'] = 'unparseable response body'

        self.logger.log(
            logging.WARNING if response.status_code >= 400 else logging.INFO,
            f"REQUEST_END: {self.function_name} - {response.status_code} ({duration*1000:.2f}ms)",
            extra={
                'custom_dimensions': context,
                'operation_id': self.correlation_id
            }
        )

    def log_business_event(self, event_type: str, details: Dict[str, Any]):
        """Log business logic events"""
        context = {
            'correlation_id': self.correlation_id,
            'function': self.function_name,
            'event_type': event_type,
            'timestamp': datetime.utcnow().isoformat()
        }
        context.update(details)

        self.logger.info(f"BUSINESS_EVENT: {event_type}", extra={
            'custom_dimensions': context,
            'operation_id': self.correlation_id
        })

    def log_error(self, error: Exception, context: Dict[str, Any] = None):
        """Log errors with full context and stack trace"""
        error_context = {
            'correlation_id': self.correlation_id,
            'function': self.function_name,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'stack_trace': traceback.format_exc(),
            'timestamp': datetime.utcnow().isoformat()
        }

        if context:
            error_context.update(context)

        self.logger.error(f"ERROR: {type(error).__name__}: {str(error)}", extra={
            'custom_dimensions': error_context,
            'operation_id': self.correlation_id
        })

    def log_warning(self, message: str, context: Dict[str, Any] = None):
        """Log warnings with context"""
        self._log(logging.WARNING, f"WARNING: {message}", context)

    def log_debug(self, message: str, context: Dict[str, Any] = None):
        """Log debug information"""
        self._log(logging.DEBUG, f"DEBUG: {message}", context)

    def _log(self, level: int, message: str, context: Dict[str, Any] = None):
        log_context = {
            'correlation_id': self.correlation_id,
            'function': self.function_name,
            'timestamp': datetime.utcnow().isoformat()
        }

        if context:
            log_context.update(context)

        self.logger.log(level, message, extra={
            'custom_dimensions': log_context,
            'operation_id': self.correlation_id
        })

    def _sanitize_request_body(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Remove sensitive information from request body for logging"""
        sensitive_keys = ['password', 'secret', 'key', 'token', 'credential']

        def sanitize_dict(d):
            if isinstance(d, dict):
                return {
                    k: '***REDACTED***' if any(sensitive in k.lower() for sensitive in sensitive_keys)
                    else sanitize_dict(v) if isinstance(v, (dict, list)) else v
                    for k, v in d.items()
                }
            elif isinstance(d, list):
                return [sanitize_dict(item) for item in d]
            else:
                return d

        return sanitize_dict(body)


@contextmanager
def quiet_mode(logger_names: Sequence[str] = NOISY_LOGGERS,
               level: int = logging.WARNING) -> Iterator[None]:
    """
    Suppress per-request diagnostic output for the duration of a block.

    Overlapping blocks, nested or on other threads, share one suppression:
    each logger gets back the level it had before the first block entered
    once the last block exits, including when a block raises.
    """
    names = list(dict.fromkeys(logger_names))

    with _quiet_lock:
        for name in names:
            lg = logging.getLogger(name)
            if _quiet_holders.get(name, 0) == 0:
                _quiet_saved_levels[name] = lg.level
            _quiet_holders[name] = _quiet_holders.get(name, 0) + 1
            if lg.getEffectiveLevel() < level:
                lg.setLevel(level)
    try:
        yield
    finally:
        with _quiet_lock:
            for name in names:
                _quiet_holders[name] -= 1
                if _quiet_holders[name] == 0:
                    del _quiet_holders[name]
                    logging.getLogger(name).setLevel(_quiet_saved_levels.pop(name))


def log_adminservice_operation(operation: str):
    """Decorator to log AdminService client operations"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.time()
            client_logger = logging.getLogger('services.adminservice_client')

            try:
                result = func(self, *args, **kwargs)
                duration = time.time() - start_time

                client_logger.info(
                    f"AdminService operation completed: {operation}",
                    extra={
                        'custom_dimensions': {
                            'operation': operation,
                            'duration_ms': round(duration * 1000, 2),
                            'status': 'SUCCESS',
                            'args_count': len(args),
                            'timestamp': datetime.utcnow().isoformat()
                        }
                    }
                )

                return result

            except Exception as e:
                duration = time.time() - start_time

                client_logger.error(
                    f"AdminService operation failed: {operation} - {str(e)}",
                    extra={
                        'custom_dimensions': {
                            'operation': operation,
                            'duration_ms': round(duration * 1000, 2),
                            'status': 'ERROR',
                            'error': str(e),
                            'error_type': type(e).__name__,
                            'args_count': len(args),
                            'timestamp': datetime.utcnow().isoformat()
                        }
                    }
                )

                raise

        return wrapper
    return decorator
