"""
Streaming helpers for mcpy
Generator combinators and handlers that drain a generator chunk by chunk,
reporting progress and stopping early when the request is cancelled
"""

import logging
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from .asyncops import Generator, generator
from .dispatcher import Dispatcher, ExecutionContext, current_context

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

StreamingHandler = Callable[[Any, ExecutionContext], Generator]


@generator
def stream_json_array(items: Any):
    """Yield each element of a list; anything else yields nothing"""
    if not isinstance(items, list):
        return
    for item in items:
        yield item


@generator
def transform_generator(source: Iterable[T], transform: Callable[[T], U]):
    for item in source:
        yield transform(item)


@generator
def filter_generator(source: Iterable[T], predicate: Callable[[T], bool]):
    for item in source:
        if predicate(item):
            yield item


@generator
def stream_paginated(fetch_page: Callable[[int], Any],
                     extract_items: Callable[[Any], Any],
                     has_more: Callable[[Any], bool]):
    """Yield items page by page, checking for cancellation between pages"""
    page = 0
    while True:
        response = fetch_page(page)
        items = extract_items(response)
        if isinstance(items, list):
            yield from items
        if not has_more(response):
            return
        page += 1
        ctx = current_context()
        if ctx is not None and ctx.is_cancelled:
            logger.debug(f"Pagination stopped after page {page} by cancellation")
            return


def collect_stream(source: Iterable[T], context: Optional[ExecutionContext] = None,
                   progress_key: str = "chunks_processed",
                   total: Optional[int] = None) -> List[T]:
    """
    Drain a generator into a list.
    Reports progress after every chunk and stops at the first chunk boundary
    after cancellation is requested.
    """
    if context is None:
        context = current_context()

    results: List[T] = []
    for chunk in source:
        results.append(chunk)
        if context is None:
            continue
        payload = {progress_key: len(results)}
        if total:
            payload['total'] = total
            payload['progress'] = len(results) / total
        context.report_progress(payload)
        if context.is_cancelled:
            logger.debug(f"Stream for {context.method} cancelled after {len(results)} chunk(s)")
            break
    return results


def register_streaming_method(dispatcher: Dispatcher, method_name: str, handler: StreamingHandler,
                              estimate_total: Optional[Callable[[Any], int]] = None,
                              progress_key: str = "chunks_processed"):
    """Register a handler whose generator output is collected into the result list"""

    def collect(params: Any, ctx: ExecutionContext) -> List[Any]:
        total = estimate_total(params) if estimate_total is not None else None
        return collect_stream(handler(params, ctx), ctx, progress_key=progress_key, total=total)

    dispatcher.register(method_name, collect)
