"""
Protocol Endpoint for mcpy
Bidirectional JSON-RPC peer: correlates outbound requests with their responses,
routes inbound requests, notifications and batches through a Dispatcher, and
implements the initialize handshake, cancellation and progress notifications
"""

import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .asyncops import Promise, Task, sync_wait
from .dispatcher import Dispatcher, ExecutionContext, Handler
from .protocol import (
    ProtocolError, Message, check_response, is_request, make_error, make_notification,
    make_request, parse_message, salvage_id, serialize
)
from ..config import MCPyConfig, get_config

logger = logging.getLogger(__name__)

INITIALIZE_METHOD = "initialize"
CANCEL_METHOD = "$/cancelRequest"
PROGRESS_METHOD = "$/progress"

# Methods accepted before the handshake when strict initialization is on
_PRE_INITIALIZE_METHODS = {INITIALIZE_METHOD, CANCEL_METHOD, PROGRESS_METHOD}

RequestId = Union[str, int]
Sender = Callable[[str], None]
ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[ProtocolError], None]


class SessionState(Enum):
    """Initialization state of an endpoint; only ever moves forward"""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


@dataclass
class PendingRequest:
    """Outbound request awaiting its response"""
    id: RequestId
    method: str
    on_result: Optional[ResultCallback] = None
    on_error: Optional[ErrorCallback] = None
    progress_token: Optional[RequestId] = None
    created_at: float = field(default_factory=time.time)


class Endpoint:
    """
    One side of a JSON-RPC conversation.
    The sender collaborator receives one serialized message per call; the
    transport delivers decoded inbound messages to receive() from any thread.
    """

    def __init__(self, sender: Sender, dispatcher: Optional[Dispatcher] = None,
                 config: Optional[MCPyConfig] = None, executor: Optional[Executor] = None):
        self.config = config or get_config()
        self.sender = sender
        # Inbound requests run on this executor when set; notifications and
        # responses stay on the receiving thread
        self.executor = executor
        self.dispatcher = dispatcher or Dispatcher(log_payloads=self.config.log_payloads)
        self.dispatcher.progress_sink = self._emit_progress

        self._state = SessionState.UNINITIALIZED
        self._pending: Dict[RequestId, PendingRequest] = {}
        self._progress_routes: Dict[RequestId, Callable[[Any], None]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._initialize_handler: Optional[Handler] = None

        self.dispatcher.register(INITIALIZE_METHOD, self._handle_initialize)
        self.dispatcher.register(CANCEL_METHOD, self._handle_cancel)
        self.dispatcher.register(PROGRESS_METHOD, self._handle_progress)

    # -------------------------
    # Registration and state
    # -------------------------

    def register(self, method_name: str, handler: Handler):
        """Register a handler(params, context) for inbound requests and notifications"""
        self.dispatcher.register(method_name, handler)

    add = register

    def set_initialize_handler(self, handler: Handler):
        """Supply the result of inbound initialize requests"""
        self._initialize_handler = handler

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def is_initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self):
        """Drop every pending request; their callbacks will never run"""
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            self._progress_routes.clear()
        if dropped:
            logger.info(f"Endpoint closed with {dropped} pending request(s) dropped")

    # -------------------------
    # Outbound
    # -------------------------

    def send_request(self, method: str, params: Optional[Union[Dict, List]] = None,
                     on_result: Optional[ResultCallback] = None,
                     on_error: Optional[ErrorCallback] = None,
                     progress_token: Optional[RequestId] = None,
                     on_progress: Optional[Callable[[Any], None]] = None,
                     request_id: Optional[RequestId] = None) -> RequestId:
        """
        Send a request and remember its callbacks until the response arrives.
        Ids come from the endpoint's counter unless request_id is given; an
        explicit id must not collide with one that is still pending.
        """
        if request_id is not None and (
                isinstance(request_id, bool) or not isinstance(request_id, (str, int))):
            raise TypeError("request_id must be a string or an integer")
        if progress_token is not None:
            if isinstance(params, list):
                raise ValueError("Progress tokens require object params")
            params = dict(params or {})
            meta = dict(params.get('_meta') or {})
            meta['progressToken'] = progress_token
            params['_meta'] = meta

        with self._lock:
            if request_id is None:
                request_id = next(self._ids)
                while request_id in self._pending:
                    request_id = next(self._ids)
            elif request_id in self._pending:
                raise ValueError(f"Request id {request_id!r} is already pending")
            self._pending[request_id] = PendingRequest(
                id=request_id,
                method=method,
                on_result=on_result,
                on_error=on_error,
                progress_token=progress_token,
            )
            if progress_token is not None and on_progress is not None:
                self._progress_routes[progress_token] = on_progress

        try:
            self._send(make_request(request_id, method, params))
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
                if progress_token is not None:
                    self._progress_routes.pop(progress_token, None)
            raise

        logger.debug(f"Sent request {method} ({request_id!r})")
        return request_id

    def send_notification(self, method: str, params: Optional[Union[Dict, List]] = None):
        self._send(make_notification(method, params))

    def request(self, method: str, params: Optional[Union[Dict, List]] = None,
                progress_token: Optional[RequestId] = None,
                on_progress: Optional[Callable[[Any], None]] = None) -> Task:
        """
        Lazy Task resolving with the result of a request.
        The request is sent when the task is first awaited; an error response
        is raised as ProtocolError. Under sync_wait the response may arrive on
        any thread, including the one that sent the request.
        """
        async def run():
            promise = Promise()
            self.send_request(method, params,
                              on_result=promise.set_result,
                              on_error=promise.set_exception,
                              progress_token=progress_token,
                              on_progress=on_progress)
            return await promise

        return Task(run())

    def call(self, method: str, params: Optional[Union[Dict, List]] = None) -> Any:
        """Send a request and block until its result arrives"""
        return sync_wait(self.request(method, params))

    def cancel_request(self, request_id: RequestId):
        """Ask the peer to stop working on one of our requests"""
        self.send_notification(CANCEL_METHOD, {'id': request_id})

    def initialize(self, params: Optional[Dict[str, Any]] = None,
                   on_result: Optional[ResultCallback] = None,
                   on_error: Optional[ErrorCallback] = None) -> Optional[RequestId]:
        """Client side of the handshake; the state flips on a successful response"""
        if self.is_initialized():
            if on_error is not None:
                on_error(ProtocolError.invalid_request("Already initialized"))
            return None

        def handle_result(result: Any):
            with self._lock:
                self._state = SessionState.INITIALIZED
            logger.info("Session initialized")
            if on_result is not None:
                on_result(result)

        return self.send_request(INITIALIZE_METHOD, params if params is not None else {},
                                 on_result=handle_result, on_error=on_error)

    # -------------------------
    # Inbound
    # -------------------------

    def receive(self, message: Any):
        """Process one decoded message or batch, sending any responses"""
        if self.executor is not None and self._runs_on_executor(message):
            try:
                future = self.executor.submit(self._receive_now, message)
            except RuntimeError as e:
                logger.warning(f"Dropping inbound request after shutdown: {e}")
                return
            future.add_done_callback(self._log_worker_failure)
            return
        self._receive_now(message)

    def _runs_on_executor(self, message: Any) -> bool:
        if isinstance(message, list):
            return bool(message)
        return (is_request(message) and message.get('id') is not None
                and message.get('method') != INITIALIZE_METHOD)

    def _log_worker_failure(self, future: Future):
        error = future.exception()
        if error is not None:
            logger.error(f"Inbound request worker failed: {error}", exc_info=error)

    def _receive_now(self, message: Any):
        if isinstance(message, list):
            if not message:
                self._send(make_error(None, ProtocolError.invalid_request("Invalid Request: empty batch")))
                return
            responses = []
            for element in message:
                response = self._process(element)
                if response is not None:
                    responses.append(response)
            if responses:
                self._send(responses)
            return

        response = self._process(message)
        if response is not None:
            self._send(response)

    def receive_text(self, text: Union[str, bytes]):
        """Decode and process one raw message, answering Parse Error if it is malformed"""
        try:
            message = parse_message(text)
        except ProtocolError as e:
            logger.warning(f"Could not parse inbound message: {e.message}")
            self._send(make_error(None, e))
            return
        self.receive(message)

    def _process(self, element: Any) -> Optional[Message]:
        if isinstance(element, dict) and 'method' not in element and (
                'result' in element or 'error' in element):
            error = check_response(element)
            if error is not None:
                logger.warning(f"Rejected malformed response: {error.message}")
                request_id = salvage_id(element)
                self._fail_pending(request_id, error)
                return make_error(request_id, error)
            self._handle_response(element)
            return None

        if self.config.strict_initialization and is_request(element):
            method = element.get('method')
            if method not in _PRE_INITIALIZE_METHODS and not self.is_initialized():
                if element.get('id') is None:
                    logger.debug(f"Dropping notification {method} before initialization")
                    return None
                return make_error(salvage_id(element), ProtocolError.invalid_request("Not initialized"))

        response = self.dispatcher.dispatch(element)
        if response is None:
            return None
        return self._ensure_serializable(response)

    def _fail_pending(self, request_id: Optional[RequestId], error: ProtocolError):
        """Settle a pending request whose response could not be accepted"""
        with self._lock:
            if request_id is None or request_id not in self._pending:
                return
        self._handle_response({'id': request_id, 'error': error.to_dict()})

    def _handle_response(self, message: Message):
        request_id = message['id']
        with self._lock:
            pending = self._pending.pop(request_id, None)
            if pending is not None and pending.progress_token is not None:
                self._progress_routes.pop(pending.progress_token, None)

        if pending is None:
            logger.warning(f"Dropping response for unknown request id {request_id!r}")
            return

        if 'error' in message:
            callback, value = pending.on_error, ProtocolError.from_dict(message['error'])
        else:
            callback, value = pending.on_result, message['result']

        logger.debug(f"Received response for {pending.method} ({request_id!r})")
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Response callback for {pending.method} ({request_id!r}) raised: {e}",
                         exc_info=True)

    def _ensure_serializable(self, response: Message) -> Message:
        try:
            serialize(response)
        except (TypeError, ValueError) as e:
            logger.error(f"Result for request {response.get('id')!r} is not JSON serializable: {e}")
            return make_error(response.get('id'),
                              ProtocolError.internal_error(f"Internal error: unserializable result ({e})"))
        return response

    def _send(self, message: Union[Message, List[Message]]):
        self.sender(serialize(message))

    # -------------------------
    # Built-in handlers
    # -------------------------

    def _handle_initialize(self, params: Any, ctx: ExecutionContext) -> Any:
        if self.is_initialized():
            raise ProtocolError.invalid_request("Already initialized")

        result: Any = {}
        if self._initialize_handler is not None:
            result = self._initialize_handler(params, ctx)
            if hasattr(result, '__await__'):
                result = sync_wait(result)

        with self._lock:
            if self._state is SessionState.INITIALIZED:
                raise ProtocolError.invalid_request("Already initialized")
            self._state = SessionState.INITIALIZED
        logger.info("Session initialized by peer")
        return result

    def _handle_cancel(self, params: Any, ctx: ExecutionContext):
        if not isinstance(params, dict) or 'id' not in params:
            raise ProtocolError.invalid_params("$/cancelRequest requires an id")
        self.dispatcher.cancel(params['id'])

    def _handle_progress(self, params: Any, ctx: ExecutionContext):
        if not isinstance(params, dict):
            raise ProtocolError.invalid_params("$/progress requires object params")
        token = params.get('progressToken')
        with self._lock:
            route = self._progress_routes.get(token)
        if route is None:
            logger.debug(f"No progress route for token {token!r}")
            return
        route(params.get('value'))

    def _emit_progress(self, token: RequestId, payload: Any):
        self.send_notification(PROGRESS_METHOD, {'progressToken': token, 'value': payload})
