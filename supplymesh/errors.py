from typing import Any


class DomainError(Exception):
    """Base class for order, stock and rating failures; `detail` is returned to API callers."""

    default_detail: Any = "Domain error"

    def __init__(self, detail: Any = None):
        self.detail = self.default_detail if detail is None else detail
        super().__init__(self.detail if isinstance(self.detail, str) else self.default_detail)


class NotFoundError(DomainError):
    default_detail = "Not found"


class ConflictError(DomainError):
    default_detail = "Conflict"


class ValidationError(DomainError):
    default_detail = "Validation error"


class ExternalCollaboratorError(DomainError):
    """A sender or the reorder path could not complete.

    Never escapes the operation that triggered it; callers turn it into a result field.
    """

    default_detail = "Collaborator unavailable"
