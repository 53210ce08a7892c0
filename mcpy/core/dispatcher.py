"""
Method Dispatcher for mcpy
Maps method names to handlers and turns each incoming request or notification
into at most one response, with per-request execution context for progress
reporting and cooperative cancellation
"""

import contextvars
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .asyncops import sync_wait
from .protocol import (
    ProtocolError, Message, check_request, is_notification, make_error, make_result, salvage_id
)
from ..utils.logging import safe_repr

logger = logging.getLogger(__name__)

Handler = Callable[[Any, "ExecutionContext"], Any]
ProgressSink = Callable[[Union[str, int], Any], None]

_current_context: contextvars.ContextVar[Optional["ExecutionContext"]] = contextvars.ContextVar(
    "mcpy_execution_context", default=None
)


@dataclass
class ExecutionContext:
    """State visible to a handler while it services one request"""
    request_id: Optional[Union[str, int]]
    method: str
    progress_token: Optional[Union[str, int]] = None
    progress_sink: Optional[ProgressSink] = None
    started_at: float = field(default_factory=time.time)
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def cancel(self):
        """Mark the request as cancelled; the handler decides when to stop"""
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self):
        """Raise a Request Cancelled error if cancellation was requested"""
        if self._cancelled.is_set():
            raise ProtocolError.request_cancelled(f"Request {self.request_id!r} was cancelled")

    def report_progress(self, payload: Any) -> bool:
        """Emit a progress notification; a no-op without a progress token"""
        if self.progress_token is None or self.progress_sink is None:
            return False
        self.progress_sink(self.progress_token, payload)
        return True


def current_context() -> Optional[ExecutionContext]:
    """Context of the handler running in the current thread or task, if any"""
    return _current_context.get()


def report_progress(payload: Any) -> bool:
    ctx = current_context()
    if ctx is None:
        return False
    return ctx.report_progress(payload)


def is_cancelled() -> bool:
    ctx = current_context()
    return ctx is not None and ctx.is_cancelled


def extract_progress_token(params: Any) -> Optional[Union[str, int]]:
    """Progress tokens travel in params._meta.progressToken"""
    if isinstance(params, dict):
        meta = params.get('_meta')
        if isinstance(meta, dict):
            token = meta.get('progressToken')
            if isinstance(token, (str, int)) and not isinstance(token, bool):
                return token
    return None


class Dispatcher:
    """Method registry and single-message dispatch"""

    def __init__(self, progress_sink: Optional[ProgressSink] = None, log_payloads: bool = False):
        self.progress_sink = progress_sink
        self.log_payloads = log_payloads
        self.method_handlers: Dict[str, Handler] = {}
        self._in_flight: Dict[Union[str, int], ExecutionContext] = {}
        self._lock = threading.RLock()
        self.stats = {
            'requests_processed': 0,
            'notifications_processed': 0,
            'errors_count': 0,
        }

    def register(self, method_name: str, handler: Handler):
        """Register a method handler; re-registering a name replaces it"""
        with self._lock:
            replaced = method_name in self.method_handlers
            self.method_handlers[method_name] = handler
        if replaced:
            logger.debug(f"Replaced method handler: {method_name}")
        else:
            logger.debug(f"Registered method handler: {method_name}")

    # Alias kept for callers used to the endpoint-style name
    add = register

    def unregister(self, method_name: str) -> bool:
        with self._lock:
            return self.method_handlers.pop(method_name, None) is not None

    def has_method(self, method_name: str) -> bool:
        with self._lock:
            return method_name in self.method_handlers

    def methods(self) -> List[str]:
        with self._lock:
            return list(self.method_handlers.keys())

    def cancel(self, request_id: Union[str, int]) -> bool:
        """Flag the in-flight request with this id as cancelled"""
        with self._lock:
            ctx = self._in_flight.get(request_id)
        if ctx is None:
            logger.debug(f"No in-flight request {request_id!r} to cancel")
            return False
        ctx.cancel()
        logger.info(f"Cancellation requested for {ctx.method} ({request_id!r})")
        return True

    def in_flight(self) -> List[Union[str, int]]:
        with self._lock:
            return list(self._in_flight.keys())

    def dispatch(self, message: Any) -> Optional[Message]:
        """Process one request or notification and return its response, if any"""
        error = check_request(message)
        if error is not None:
            with self._lock:
                self.stats['errors_count'] += 1
            logger.warning(f"Rejected malformed message: {error.message}")
            return make_error(salvage_id(message), error)

        method = message['method']
        params = message.get('params')
        notification = is_notification(message)
        request_id = None if notification else message['id']

        if self.log_payloads:
            logger.debug(f"Dispatching {method} ({request_id!r}) params={safe_repr(params)}")

        with self._lock:
            handler = self.method_handlers.get(method)
            if notification:
                self.stats['notifications_processed'] += 1
            else:
                self.stats['requests_processed'] += 1

        if handler is None:
            if notification:
                logger.debug(f"Ignoring notification for unknown method: {method}")
                return None
            with self._lock:
                self.stats['errors_count'] += 1
            return make_error(request_id, ProtocolError.method_not_found(method))

        ctx = ExecutionContext(
            request_id=request_id,
            method=method,
            progress_token=extract_progress_token(params),
            progress_sink=self.progress_sink,
        )
        try:
            result = self._invoke(handler, params, ctx)
        except ProtocolError as e:
            with self._lock:
                self.stats['errors_count'] += 1
            if notification:
                logger.warning(f"Notification handler {method} raised {e}")
                return None
            logger.debug(f"Handler {method} returned error {e}")
            return make_error(request_id, e)
        except Exception as e:
            with self._lock:
                self.stats['errors_count'] += 1
            logger.error(f"Method handler error in {method}: {e}", exc_info=True)
            if notification:
                return None
            return make_error(request_id, ProtocolError.internal_error(f"Internal error: {e}"))

        if notification:
            return None
        return make_result(request_id, result)

    def _invoke(self, handler: Handler, params: Any, ctx: ExecutionContext) -> Any:
        """Call the handler with its context published for the duration"""
        if ctx.request_id is not None:
            with self._lock:
                self._in_flight[ctx.request_id] = ctx
        token = _current_context.set(ctx)
        try:
            result = handler(params, ctx)
            if hasattr(result, '__await__'):
                result = sync_wait(result)
            return result
        finally:
            _current_context.reset(token)
            if ctx.request_id is not None:
                with self._lock:
                    if self._in_flight.get(ctx.request_id) is ctx:
                        del self._in_flight[ctx.request_id]

    def get_stats(self) -> Dict[str, Any]:
        """Get dispatcher statistics"""
        with self._lock:
            return {
                **self.stats,
                'registered_methods': list(self.method_handlers.keys()),
                'in_flight': len(self._in_flight),
            }
