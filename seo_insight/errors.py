from __future__ import annotations


class InvalidRangeError(ValueError):
    """Raised when a date window ends before it starts."""


class DataIntegrityError(ValueError):
    """Raised for aggregate values that cannot be ranked safely."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Malformed aggregate for {key!r}: {reason}")
        self.key = key
        self.reason = reason


UPSTREAM_CATEGORIES = ("auth", "timeout", "query", "transport")


class UpstreamError(RuntimeError):
    """Opaque failure of the aggregation provider.

    ``category`` is one of ``auth``, ``timeout``, ``query`` or ``transport``.
    """

    def __init__(self, message: str, category: str = "transport") -> None:
        super().__init__(message)
        self.category = category if category in UPSTREAM_CATEGORIES else "transport"

    @property
    def is_auth_error(self) -> bool:
        return self.category == "auth"
