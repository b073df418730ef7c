"""
=============================================================================
URL ROUTER
=============================================================================

Exact-path routing: the last stage of the pipeline ("dispatch").

=============================================================================
ROUTING RULES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ROUTING FLOW                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   request.path ──► normalize ──► compare with each route in order   │
    │                    "/health/" → "/health"                           │
    │                                                                      │
    │   Route.method is None   → any method matches                       │
    │   Route.method == "GET"  → only GET matches                         │
    │                                                                      │
    │   no match (path OR method) → 404 {error, message, path}            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There is deliberately no 405: a known path with the wrong method is
reported as an unknown route, and the 404 body echoes request.path
exactly as the client sent it.

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Optional, List
import logging

from .request import HTTPRequest
from .response import HTTPResponse, not_found


logger = logging.getLogger(__name__)


# Handler: takes a request, returns a response.
Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    """A single registered route."""

    path: str
    method: Optional[str]            # None = any method
    handler: Handler
    name: Optional[str] = None

    def matches(self, method: str, path: str) -> bool:
        if self.method and self.method != method.upper():
            return False
        return self.path == path


class Router:
    """
    Maps request paths to handlers.

    Usage:
        router = Router()

        @router.route("/")
        def hello(request):
            ...

        @router.get("/health")
        def health(request):
            ...

        response = router.handle(request)
    """

    def __init__(self):
        self._routes: List[Route] = []

    @staticmethod
    def normalize(path: str) -> str:
        """
        Drop one trailing slash ("/health/" → "/health").

        Nothing else changes: "//foo" and "//" stay as they are and only
        match routes registered that way.
        """
        if len(path) > 1 and path.endswith("/") and not path.endswith("//"):
            return path[:-1]
        return path

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
        name: Optional[str] = None
    ) -> Route:
        route = Route(
            path=self.normalize(path),
            method=method.upper() if method else None,
            handler=handler,
            name=name or getattr(handler, "__name__", None),
        )
        self._routes.append(route)
        logger.debug(f"Registered route {route.method or '*'} {route.path}")
        return route

    def match(self, method: str, path: str) -> Optional[Route]:
        """First registered route matching method and path, or None."""
        path = self.normalize(path)
        for route in self._routes:
            if route.matches(method, path):
                return route
        return None

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Dispatch to the matching handler, or answer 404."""
        route = self.match(request.method, request.path)
        if route is None:
            return not_found(request.method, request.path)
        return route.handler(request)

    # =========================================================================
    # DECORATOR-STYLE REGISTRATION
    # =========================================================================

    def route(
        self,
        path: str,
        method: Optional[str] = None,
        name: Optional[str] = None
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", name)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)
