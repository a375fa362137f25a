"""
=============================================================================
MIDDLEWARE PIPELINE
=============================================================================

Middleware wraps the file responder like layers of an onion (Chain of
Responsibility):

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Request ─────────────────────────────────────────────►            │
    │                                                                      │
    │   ┌──────────┐    ┌─────────────┐    ┌───────────────┐              │
    │   │ Logging  │───►│ Compression │───►│ FileResponder │              │
    │   └────┬─────┘    └──────┬──────┘    └───────┬───────┘              │
    │        │                 │                   │                      │
    │   [before]          [before]              [handle]                  │
    │   start timer       nothing                                         │
    │        ▲                 ▲                   │                      │
    │   [after]           [after]                  ▼                      │
    │   access log        gzip the body                                   │
    │                                                                      │
    │   ◄───────────────────────────────────────────────── Response       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Since bodies may be lazy chunk iterators, "after" runs before the body is
actually produced. Middleware that needs to see the bytes (compression)
wraps the iterator instead of reading it.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)

NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    One layer of the pipeline.

        class AddHeader(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Served-By", "ssiserve")
                return response

    Not calling next() short-circuits the chain.
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """Process the request, normally by calling next(request)."""

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Ordered middleware around a final handler.

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware()).add(CompressionMiddleware())
        handler = pipeline.wrap(responder.handle)

    First added is outermost.
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Build the chain around handler.

        Wrapping runs in reverse so that [A, B] becomes A(B(handler)).
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)
        return current

    def _create_wrapped_handler(self, middleware: Middleware, next_handler: NextHandler) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)
        return wrapped
