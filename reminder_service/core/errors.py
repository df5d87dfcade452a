"""
Problem-details (RFC 7807) error taxonomy.

Every error raised to an HTTP caller is a ``ProblemError``. The exception
handlers registered in ``reminder_service.main`` turn them into
``application/problem+json`` responses carrying a trace id.
"""
from typing import Any, Dict, List, Optional


PROBLEM_CONTENT_TYPE = "application/problem+json"


class ProblemError(Exception):
    status_code: int = 500
    title: str = "Internal Server Error"
    slug: str = "internal-error"

    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []

    def to_problem(self, base_url: str, instance: str, trace_id: Optional[str] = None) -> Dict[str, Any]:
        problem: Dict[str, Any] = {
            "type": f"{base_url.rstrip('/')}/problems/{self.slug}",
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
            "instance": instance,
        }
        if self.errors:
            problem["errors"] = self.errors
        if trace_id:
            problem["traceId"] = trace_id
        return problem


class ValidationError(ProblemError):
    status_code = 400
    title = "Validation Error"
    slug = "validation-error"


class InvalidIdempotencyKey(ProblemError):
    status_code = 400
    title = "Invalid Idempotency Key"
    slug = "invalid-idempotency-key"


class NotFound(ProblemError):
    status_code = 404
    title = "Not Found"
    slug = "not-found"


class IdempotencyConflict(ProblemError):
    status_code = 409
    title = "Idempotency Conflict"
    slug = "idempotency-conflict"


class InvalidTransition(ProblemError):
    status_code = 409
    title = "Invalid Transition"
    slug = "invalid-transition"


class InternalError(ProblemError):
    pass
