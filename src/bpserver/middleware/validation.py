"""
=============================================================================
INPUT VALIDATION MIDDLEWARE
=============================================================================

Fourth stage of the pipeline. Sanitizes and checks request bodies before
any route handler sees them.

=============================================================================
WHAT HAPPENS TO A BODY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   no body ─────────────────────────────────────────► continue       │
    │                                                                      │
    │   application/json ──┐                                               │
    │                      ├─► decode ──► object? ──► sanitize ──► rules  │
    │   x-www-form-        │     │           │                       │     │
    │   urlencoded ────────┘     ▼           ▼                       ▼     │
    │                         400 body    400 body           errors? 400  │
    │                                                         none → set  │
    │   other content types ──────────────────────────► request.fields    │
    │   (kept as raw bytes, not parsed)                    and continue   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

SANITIZE: every string value is trimmed and HTML-escaped
("  <b>x</b> " → "&lt;b&gt;x&lt;/b&gt;"). Non-string values pass
through unchanged.

RULES are checked per field and ALL failures are reported together:

    {"error": "Validation failed",
     "details": [{"field": "testName", "message": "..."},
                 {"field": "testType", "message": "..."}]}

=============================================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl
import html
import json
import logging

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, validation_failed


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldRule:
    """
    Constraints for one body field.

    Length limits apply to the sanitized string. allowed_values, when
    set, is an exact-match allow-list.
    """

    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    allowed_values: Optional[Tuple[str, ...]] = None

    def check(self, name: str, value: Any) -> Optional[str]:
        """Return an error message, or None when value satisfies the rule."""
        if value is None:
            return f"{name} is required" if self.required else None

        if not isinstance(value, str):
            return f"{name} must be a string"

        if self.required and not value:
            return f"{name} is required"

        if self.min_length is not None and len(value) < self.min_length:
            return f"{name} must be at least {self.min_length} characters"

        if self.max_length is not None and len(value) > self.max_length:
            return f"{name} must be at most {self.max_length} characters"

        if self.allowed_values is not None and value not in self.allowed_values:
            return f"{name} must be one of: {', '.join(self.allowed_values)}"

        return None


# Fields of the planned test-submission payload.
DEFAULT_RULES: Dict[str, FieldRule] = {
    "testName": FieldRule(min_length=1, max_length=100),
    "testType": FieldRule(allowed_values=("unit", "integration", "performance")),
    "description": FieldRule(max_length=500),
}


def sanitize(value: Any) -> Any:
    """Trim and HTML-escape strings; leave other values alone."""
    if isinstance(value, str):
        return html.escape(value.strip())
    return value


class ValidationMiddleware(Middleware):
    """
    Body sanitization and per-field validation.

    Usage:
        Stage("validation", ValidationMiddleware())

        # Custom rules
        ValidationMiddleware(rules={"email": FieldRule(required=True, max_length=254)})
    """

    FORM_TYPES = ("application/x-www-form-urlencoded",)
    JSON_TYPES = ("application/json",)

    def __init__(self, rules: Optional[Dict[str, FieldRule]] = None):
        self.rules = dict(DEFAULT_RULES if rules is None else rules)

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not request.body:
            return next(request)

        content_type = request.content_type or ""
        if content_type not in self.JSON_TYPES + self.FORM_TYPES:
            return next(request)

        # ═══════════════════════════════════════════════════════════════════
        # DECODE
        # ═══════════════════════════════════════════════════════════════════
        try:
            raw_fields = self._decode(request, content_type)
        except ValueError as e:
            logger.info(f"[{request.request_id}] Rejected body: {e}")
            return validation_failed([{"field": "body", "message": str(e)}])

        # ═══════════════════════════════════════════════════════════════════
        # SANITIZE + VALIDATE
        # ═══════════════════════════════════════════════════════════════════
        fields = {name: sanitize(value) for name, value in raw_fields.items()}
        errors = self.validate(fields)

        if errors:
            logger.info(
                f"[{request.request_id}] Validation failed for "
                f"{', '.join(e['field'] for e in errors)}"
            )
            return validation_failed(errors)

        request.fields = fields
        return next(request)

    def validate(self, fields: Dict[str, Any]) -> List[Dict[str, str]]:
        """Check fields against every rule, collecting all failures."""
        errors = []
        for name, rule in self.rules.items():
            message = rule.check(name, fields.get(name))
            if message is not None:
                errors.append({"field": name, "message": message})
        return errors

    def _decode(self, request: HTTPRequest, content_type: str) -> Dict[str, Any]:
        try:
            text = request.body.decode("utf-8")
        except UnicodeDecodeError:
            raise ValueError("Body is not valid UTF-8")

        if content_type in self.FORM_TYPES:
            return self._decode_form(parse_qsl(text, keep_blank_values=True))

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e.msg}")

        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data

    def _decode_form(self, pairs: Sequence[Tuple[str, str]]) -> Dict[str, Any]:
        # Last value wins for repeated keys.
        return dict(pairs)
