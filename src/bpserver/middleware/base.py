"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Defines the middleware protocol, the stage descriptor, and the pipeline
that chains stages in a declared order with a terminal 500 fallback.

=============================================================================
CHAIN OF RESPONSIBILITY, WITH A DECLARED ORDER
=============================================================================

Each stage either answers the request itself (short-circuit) or calls
next(request). The ORDER is part of the contract, so it is declared as a
list of named Stage descriptors instead of emerging from call sites:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    SECURITY PIPELINE - REQUEST FLOW                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  ┌──────────┐   ┌──────────┐   ┌──────────┐   ┌──────────┐   ┌────┐ │
    │  │ security │──►│   cors   │──►│   rate   │──►│validation│──►│disp│ │
    │  │ headers  │   │          │   │  limit   │   │          │   │atch│ │
    │  └────┬─────┘   └────┬─────┘   └────┬─────┘   └────┬─────┘   └────┘ │
    │       │              │              │              │                │
    │   never stops   403 / 200       429 when       400 when             │
    │                 preflight       window full    fields fail          │
    │                                                                      │
    │  ◄───── every stage still post-processes whatever comes back ─────  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TERMINAL FALLBACK
=============================================================================

Every link of the chain is wrapped in a guard. An exception escaping a
stage (or the route handler) is turned into a generic 500 AT THAT LINK,
so the stages in front of it still see a response and still attach
their headers:

    security ─► cors ─► rate ─► validation ─► dispatch  💥 KeyError
                                                 │
                              guard(dispatch) ◄──┘ logs traceback,
                                                   returns 500
    security ◄─ cors ◄─ rate ◄─ validation ◄──────┘
    (HSTS,CSP)  (ACAO)  (X-RateLimit-*)

The process keeps serving; no exception ever reaches the connection.

=============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
import logging
import time

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, internal_error


logger = logging.getLogger(__name__)


# NextHandler is the signature for the next stage or the final handler.
NextHandler = Callable[[HTTPRequest], HTTPResponse]

DISPATCH = "dispatch"


class Middleware(ABC):
    """
    Abstract base class for pipeline stages.

    =========================================================================
    THE MIDDLEWARE CONTRACT
    =========================================================================

        def __call__(self, request, next) -> HTTPResponse:
            if rejected(request):
                return error_response          # short-circuit

            response = next(request)           # continue the chain
            response.headers["X-..."] = "..."  # post-process
            return response

    Stages treat the request as read-only. The only exception is the
    validation stage, which stores sanitized fields on request.fields.

    =========================================================================
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Process the request.

        Args:
            request: The incoming HTTP request
            next: The next handler in the chain (call this to continue!)

        Returns:
            HTTP response (either from next() or short-circuited)
        """

    @property
    def name(self) -> str:
        """Get the middleware name for logging."""
        return self.__class__.__name__


@dataclass(frozen=True)
class Stage:
    """One named entry in the declared pipeline order."""

    name: str
    middleware: Middleware


class MiddlewarePipeline:
    """
    Runs requests through a fixed, declared list of stages.

    =========================================================================
    USAGE
    =========================================================================

        pipeline = MiddlewarePipeline(
            stages=[
                Stage("security-headers", SecurityHeadersMiddleware()),
                Stage("cors", CORSMiddleware(cors_config)),
            ],
            handler=router.handle,
        )

        pipeline.stage_names   # ["security-headers", "cors", "dispatch"]
        response = pipeline(request)

    One pipeline instance is shared by every listener. It holds no
    per-request state, so concurrent calls from worker threads are safe;
    the stages own whatever shared state they need (the rate-limit store).

    =========================================================================
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        handler: NextHandler,
        access_log: Optional[Callable[[HTTPRequest, HTTPResponse, float], None]] = None,
    ):
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names) or DISPATCH in names:
            raise ValueError(f"Stage names must be unique and not '{DISPATCH}': {names}")

        self._stages: List[Stage] = list(stages)
        self._access_log = access_log
        self._chain = self.wrap(handler)

        logger.debug(f"Pipeline order: {' -> '.join(self.stage_names)}")

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    @property
    def stage_names(self) -> List[str]:
        """Stage names in execution order, ending with "dispatch"."""
        return [stage.name for stage in self._stages] + [DISPATCH]

    def get(self, name: str) -> Middleware:
        """Look up a stage's middleware by name."""
        for stage in self._stages:
            if stage.name == name:
                return stage.middleware
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self._stages)

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run one request through the whole chain.

        Never raises: the guards turn stage faults into 500 responses.
        """
        start_time = time.time()

        response = self._chain(request)
        response.headers["X-Request-ID"] = request.request_id

        if self._access_log is not None:
            duration_ms = (time.time() - start_time) * 1000
            self._access_log(request, response, duration_ms)

        return response

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Wrap a handler with all stages.

        Given [S1, S2, S3] and handler, builds

            guard(S1 → guard(S2 → guard(S3 → guard(handler))))

        wrapping in REVERSE so the first declared stage is outermost.
        """
        current = self._guard(DISPATCH, handler)

        for stage in reversed(self._stages):
            current = self._guard(
                stage.name,
                self._create_wrapped_handler(stage.middleware, current),
            )

        return current

    def _create_wrapped_handler(
        self,
        middleware: Middleware,
        next_handler: NextHandler
    ) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)

        return wrapped

    def _guard(self, stage_name: str, handler: NextHandler) -> NextHandler:
        def guarded(request: HTTPRequest) -> HTTPResponse:
            try:
                return handler(request)
            except Exception:
                logger.exception(
                    f"[{request.request_id}] Unhandled fault in stage "
                    f"'{stage_name}' for {request.method} {request.path} "
                    f"from {request.client_ip} ({request.transport})"
                )
                return internal_error()

        return guarded
