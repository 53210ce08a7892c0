"""
Transport layer for mcpy
Moves serialized JSON-RPC messages between peers: newline-delimited stdio for
subprocess servers and connected in-memory pairs for tests and local use
"""

import logging
import queue
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TextIO, Tuple

from .dispatcher import Dispatcher
from .endpoint import Endpoint
from ..config import MCPyConfig, get_config

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]
CloseHandler = Callable[[], None]


class Transport:
    """Base transport: send text out, emit inbound text to the message handler"""

    def __init__(self):
        self.message_handler: Optional[MessageHandler] = None
        self.error_handler: Optional[ErrorHandler] = None
        self.close_handler: Optional[CloseHandler] = None
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._close_emitted = False

    def send(self, message: str):
        raise NotImplementedError

    def start(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def is_open(self) -> bool:
        raise NotImplementedError

    def on_message(self, handler: MessageHandler):
        self.message_handler = handler

    def on_error(self, handler: ErrorHandler):
        self.error_handler = handler

    def on_close(self, handler: CloseHandler):
        self.close_handler = handler

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the transport has closed"""
        return self._closed.wait(timeout)

    def emit_message(self, message: str):
        if self.message_handler is None:
            logger.debug("Dropping inbound message: no handler attached")
            return
        try:
            self.message_handler(message)
        except Exception as e:
            logger.error(f"Message handler raised: {e}", exc_info=True)
            self.emit_error(f"Message handler failed: {e}")

    def emit_error(self, error: str):
        logger.warning(f"Transport error: {error}")
        if self.error_handler:
            self.error_handler(error)

    def _reset_closed(self):
        with self._close_lock:
            self._close_emitted = False
        self._closed.clear()

    def emit_close(self):
        """Run the close hook once per start, then release wait_closed"""
        with self._close_lock:
            if self._close_emitted:
                return
            self._close_emitted = True
        try:
            if self.close_handler:
                self.close_handler()
        finally:
            self._closed.set()


class StdioTransport(Transport):
    """
    One JSON message per line over a pair of text streams.
    A reader thread delivers inbound lines; end of input closes the transport.
    """

    def __init__(self, reader: Optional[TextIO] = None, writer: Optional[TextIO] = None):
        super().__init__()
        self.reader = reader if reader is not None else sys.stdin
        self.writer = writer if writer is not None else sys.stdout
        self._running = threading.Event()
        self._write_lock = threading.Lock()
        self._read_thread: Optional[threading.Thread] = None

    def send(self, message: str):
        with self._write_lock:
            try:
                self.writer.write(message)
                self.writer.write("\n")
                self.writer.flush()
            except (OSError, ValueError) as e:
                self.emit_error(f"Failed to send message: {e}")

    def start(self):
        if self._running.is_set():
            return
        self._running.set()
        self._reset_closed()
        self._read_thread = threading.Thread(target=self._read_loop, name="mcpy-stdio-reader", daemon=True)
        self._read_thread.start()
        logger.debug("Stdio transport started")

    def _read_loop(self):
        try:
            for line in self.reader:
                if not self._running.is_set():
                    break
                line = line.strip()
                if not line:
                    continue
                self.emit_message(line)
        except (OSError, ValueError) as e:
            self.emit_error(f"Read failed: {e}")
        finally:
            self._running.clear()
            logger.debug("Stdio transport reached end of input")
            self.emit_close()

    def close(self):
        # A blocked readline cannot be interrupted; the daemon reader exits at
        # EOF and its own close emit is then skipped
        self._running.clear()
        if self._read_thread is not None and self._read_thread is not threading.current_thread():
            self._read_thread.join(timeout=0.1)
        self.emit_close()

    def is_open(self) -> bool:
        return self._running.is_set()


class InMemoryTransport(Transport):
    """Queue-backed transport delivering to a connected peer on a worker thread"""

    _STOP = object()

    def __init__(self):
        super().__init__()
        self.peer: Optional["InMemoryTransport"] = None
        self._queue: "queue.Queue" = queue.Queue()
        self._running = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def connect_peer(self, peer: "InMemoryTransport"):
        self.peer = peer
        peer.peer = self

    def send(self, message: str):
        if not self._running.is_set():
            self.emit_error("Transport not started")
            return
        if self.peer is None:
            self.emit_error("No peer connected")
            return
        self.peer._queue.put(message)

    def start(self):
        if self._running.is_set():
            return
        self._running.set()
        self._reset_closed()
        self._worker = threading.Thread(target=self._process_loop, name="mcpy-memory-transport", daemon=True)
        self._worker.start()

    def _process_loop(self):
        while True:
            message = self._queue.get()
            if message is self._STOP:
                break
            self.emit_message(message)

    def close(self):
        if not self._running.is_set():
            return
        self._running.clear()
        self._queue.put(self._STOP)
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()
        self.emit_close()

    def is_open(self) -> bool:
        return self._running.is_set()


def create_in_memory_pair() -> Tuple[InMemoryTransport, InMemoryTransport]:
    """Create a pair of connected in-memory transports (client, server)"""
    client = InMemoryTransport()
    server = InMemoryTransport()
    client.connect_peer(server)
    return client, server


def bind_endpoint(transport: Transport, dispatcher: Optional[Dispatcher] = None,
                  config: Optional[MCPyConfig] = None,
                  max_workers: Optional[int] = None) -> Endpoint:
    """
    Create an endpoint that sends through transport and receives from it.
    max_workers defaults to config.max_workers. When it is above 0 inbound
    requests run on a thread pool that is shut down, after finishing queued
    work, when the transport closes.
    """
    config = config or get_config()
    workers = config.max_workers if max_workers is None else max_workers
    executor = None
    if workers > 0:
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mcpy-handler")

    endpoint = Endpoint(transport.send, dispatcher=dispatcher, config=config, executor=executor)

    def on_close():
        if executor is not None:
            executor.shutdown(wait=True)
        endpoint.close()

    transport.on_message(endpoint.receive_text)
    transport.on_close(on_close)
    return endpoint
