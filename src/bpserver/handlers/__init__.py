"""
Route handlers: the Response Generator ("/") and the health endpoint.
"""

from .hello import hello, GREETING
from .health import HealthHandler

__all__ = [
    "hello",
    "GREETING",
    "HealthHandler",
]
