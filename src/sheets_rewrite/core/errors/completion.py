"""Completion-call and configuration error classes.

A ``CompletionError`` is what every remote-call failure becomes once it has
crossed the classification boundary: downstream code inspects ``kind``,
``status`` and ``code`` on it and never looks at raw SDK or transport
exceptions again.
"""

from __future__ import annotations

from typing import Optional

from sheets_rewrite.core.errors.base import ErrorKind, RewriteError


class CompletionError(RewriteError):
    """A classified failure of the remote completion call.

    Attributes:
        kind: Classified error kind.
        status: HTTP status equivalent reported by the remote side, if any.
        code: Symbolic low-level code (e.g. ``ECONNREFUSED``), if any.
        name: Type name of the failure (e.g. ``TimeoutError``).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL_ERROR,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        name: Optional[str] = None,
    ):
        super().__init__(message, kind)
        self.status = status
        self.code = code
        self.name = name or type(self).__name__

    def __repr__(self) -> str:
        return (
            f"CompletionError(kind={self.kind.value!r}, status={self.status!r}, "
            f"code={self.code!r}, message={self.message!r})"
        )


class ConfigurationError(RewriteError):
    """Required configuration (e.g. a credential) is absent or invalid.

    Raised synchronously at construction time so misconfiguration is never
    deferred to the first request.
    """

    default_kind = ErrorKind.API_UNAVAILABLE


class InvalidRequestError(RewriteError):
    """The rewrite request failed validation.

    Attributes:
        field: Name of the offending field, if known.
    """

    default_kind = ErrorKind.INVALID_TEXT

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        *,
        field: Optional[str] = None,
    ):
        super().__init__(message, kind)
        self.field = field
