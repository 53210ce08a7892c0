"""
Asynchronous Operations for mcpy
Cooperative coroutine runtime: lazy generators, a batch-allocating object arena,
lazily started awaitable tasks and a blocking bridge for ordinary call sites
"""

import contextvars
import functools
import logging
import threading
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Generic, Iterator, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

_UNSET = object()


class GeneratorExhausted(IndexError):
    """Raised when a value is requested from a finished generator"""


class ProducerFaultError(RuntimeError):
    """Raised on the pull that hit an exception inside a generator body"""


class Generator(Generic[T]):
    """
    Pull-driven, single-pass producer of values.
    The wrapped body is not started until the first pull; once consumed it
    cannot be restarted.
    """

    def __init__(self, producer: Iterator[T]):
        self._producer = producer
        self._current: Any = _UNSET
        self._started = False
        self._done = False
        self._exception: Optional[BaseException] = None

    def next(self) -> bool:
        """Advance the producer; returns True if a value is available"""
        if self._done:
            return False
        self._started = True
        try:
            self._current = next(self._producer)
            return True
        except StopIteration:
            self._finish()
            return False
        except Exception as e:
            self._finish()
            self._exception = e
            logger.debug(f"Generator body raised {type(e).__name__}: {e}")
            raise ProducerFaultError(f"Generator faulted: {e}") from e

    # resume() mirrors next() for callers that treat the producer as a coroutine
    resume = next

    def current(self) -> T:
        """Return the last produced value"""
        if self._done:
            raise GeneratorExhausted("Generator exhausted")
        if not self._started or self._current is _UNSET:
            raise RuntimeError("Generator has not been started")
        return self._current

    @property
    def value(self) -> T:
        return self.current()

    def get_next_value(self) -> T:
        if not self.next():
            raise GeneratorExhausted("Generator exhausted")
        return self._current

    @property
    def done(self) -> bool:
        return self._done

    @property
    def faulted(self) -> bool:
        return self._exception is not None

    @property
    def exception(self) -> Optional[BaseException]:
        return self._exception

    def close(self):
        """Release the underlying producer"""
        if not self._done:
            self._finish()

    def _finish(self):
        self._done = True
        self._current = _UNSET
        close = getattr(self._producer, "close", None)
        if close is not None:
            close()

    def __iter__(self) -> "Generator[T]":
        return self

    def __next__(self) -> T:
        if self.next():
            return self._current
        raise StopIteration

    def __repr__(self) -> str:
        state = "faulted" if self.faulted else "done" if self._done else "active"
        return f"<Generator {state}>"


def generator(func: Callable[..., Iterator[T]]) -> Callable[..., Generator[T]]:
    """Decorate a generator function so each call returns a fresh Generator"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Generator[T]:
        return Generator(func(*args, **kwargs))

    return wrapper


class ObjectArena(Generic[T]):
    """
    Batch-allocating factory of default-constructed objects.
    Hands out slots from the front batch and pushes a fresh batch when it runs
    out. Vacated batches are never reused: the arena only grows.
    """

    def __init__(self, factory: Callable[[], T], batch_size: Optional[int] = None):
        if batch_size is None:
            from ..config import get_config
            batch_size = get_config().arena_batch_size
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.factory = factory
        self.batch_size = batch_size
        self._batches: Deque[List[T]] = deque()
        self._cursor = 0
        self._handed_out = 0
        self._lock = threading.Lock()
        self._batches.appendleft(self._new_batch())

    def acquire(self) -> T:
        """Hand out the next unused slot, allocating a new batch if needed"""
        with self._lock:
            if self._cursor >= self.batch_size:
                self._batches.appendleft(self._new_batch())
                self._cursor = 0
                logger.debug(f"Arena allocated batch #{len(self._batches)} of {self.batch_size}")
            obj = self._batches[0][self._cursor]
            self._cursor += 1
            self._handed_out += 1
            return obj

    def generate(self) -> Generator[T]:
        """Infinite generator of handles into the arena"""
        return Generator(self._produce())

    def _produce(self) -> Iterator[T]:
        while True:
            yield self.acquire()

    def _new_batch(self) -> List[T]:
        return [self.factory() for _ in range(self.batch_size)]

    @property
    def batch_count(self) -> int:
        with self._lock:
            return len(self._batches)

    @property
    def handed_out(self) -> int:
        with self._lock:
            return self._handed_out


class Promise(Generic[T]):
    """
    Thread-safe one-shot result holder.
    Awaiting an unresolved Promise suspends the awaiting chain until another
    thread calls set_result/set_exception.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._result: Any = _UNSET
        self._exception: Optional[BaseException] = None
        self._callbacks: List[Callable[["Promise[T]"], None]] = []

    def done(self) -> bool:
        with self._lock:
            return self._result is not _UNSET or self._exception is not None

    def set_result(self, result: T):
        self._resolve(result, None)

    def set_exception(self, exception: BaseException):
        self._resolve(_UNSET, exception)

    def _resolve(self, result: Any, exception: Optional[BaseException]):
        with self._lock:
            if self._result is not _UNSET or self._exception is not None:
                raise RuntimeError("Promise already resolved")
            self._result = result
            self._exception = exception
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def add_done_callback(self, callback: Callable[["Promise[T]"], None]):
        """Run callback once resolved; immediately if already resolved"""
        with self._lock:
            if self._result is _UNSET and self._exception is None:
                self._callbacks.append(callback)
                return
        callback(self)

    def result(self) -> T:
        with self._lock:
            if self._exception is not None:
                raise self._exception
            if self._result is _UNSET:
                raise RuntimeError("Promise is not resolved")
            return self._result

    def __await__(self):
        while not self.done():
            yield self
        return self.result()


class TaskState(Enum):
    """Lifecycle of a Task"""
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class Task(Generic[T]):
    """
    Lazily started, single-assignment asynchronous computation.
    Nothing runs until the task is first awaited; the body then executes on
    the awaiter's stack and hands control back to it on completion.
    """

    def __init__(self, coro: Awaitable[T]):
        self._coro = coro
        self._state = TaskState.PENDING
        self._result: Any = None
        self._exception: Optional[BaseException] = None

    @property
    def state(self) -> TaskState:
        return self._state

    def done(self) -> bool:
        return self._state in (TaskState.DONE, TaskState.FAILED)

    def result(self) -> T:
        if self._state is TaskState.FAILED:
            raise self._exception
        if self._state is not TaskState.DONE:
            raise RuntimeError("Task has not completed")
        return self._result

    def exception(self) -> Optional[BaseException]:
        if not self.done():
            raise RuntimeError("Task has not completed")
        return self._exception

    def __await__(self):
        if self._state is TaskState.RUNNING:
            raise RuntimeError("Task is already being awaited")
        if self._state is TaskState.PENDING:
            self._state = TaskState.RUNNING
            try:
                self._result = yield from self._coro.__await__()
            except BaseException as e:
                self._exception = e
                self._state = TaskState.FAILED
            else:
                self._state = TaskState.DONE
            finally:
                self._coro = None
        return self.result()

    def then(self, fn: Callable[[T], Any]) -> "Task[Any]":
        """Chain a follow-up computation; awaitable results are awaited too"""

        async def chained():
            value = await self
            follow_up = fn(value)
            if _is_awaitable(follow_up):
                return await follow_up
            return follow_up

        return Task(chained())

    def close(self):
        """Release a task that was never started"""
        if self._state is TaskState.PENDING and self._coro is not None:
            close = getattr(self._coro, "close", None)
            if close is not None:
                close()
            self._coro = None

    def __del__(self):
        try:
            self.close()
        except Exception as e:
            logger.debug(f"Error closing unstarted task: {e}")

    def __repr__(self) -> str:
        return f"<Task {self._state.value}>"


def task(func: Callable[..., Awaitable[T]]) -> Callable[..., Task[T]]:
    """Decorate an async function so each call returns a lazy Task"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Task[T]:
        return Task(func(*args, **kwargs))

    return wrapper


def when_all(*awaitables: Awaitable[Any]) -> Task[List[Any]]:
    """Await each awaitable in order and collect the results"""

    async def gather():
        results = []
        for awaitable in awaitables:
            results.append(await awaitable)
        return results

    return Task(gather())


def _is_awaitable(obj: Any) -> bool:
    return hasattr(obj, "__await__")


def sync_wait(awaitable: Awaitable[T]) -> T:
    """
    Drive an awaitable chain to completion on the calling thread.
    The driver is resumed once here; if the chain suspends on a Promise it is
    resumed by whichever thread resolves that Promise while this thread blocks
    on a one-shot event. Every resumption runs inside the contextvars context
    of the calling thread, so context variables survive the thread switch.
    """
    async def driver():
        return await awaitable

    coro = driver()
    context = contextvars.copy_context()
    finished = threading.Event()
    outcome = {}

    def resume(value: Any = None, error: Optional[BaseException] = None):
        while True:
            try:
                if error is not None:
                    yielded = context.run(coro.throw, error)
                else:
                    yielded = context.run(coro.send, value)
            except StopIteration as stop:
                outcome["value"] = stop.value
                finished.set()
                return
            except BaseException as e:
                outcome["error"] = e
                finished.set()
                return

            value, error = None, None
            if yielded is None:
                # bare cooperative yield
                continue
            if isinstance(yielded, Promise):
                yielded.add_done_callback(lambda _: resume())
                return
            error = RuntimeError(f"sync_wait cannot drive awaitable yielding {yielded!r}")

    resume()
    finished.wait()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
