from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotConnectedError(AppError):
    """Emit attempted without a live connection."""


class NoConnectionError(NotConnectedError):
    """Send rejected locally because the connection is not up."""


class TransportError(AppError):
    """The underlying connection failed to open or dropped."""


class FetchError(AppError):
    """A REST snapshot or history fetch failed."""

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)


class EmptyContentError(AppError):
    pass


class NoPeerSelectedError(AppError):
    pass


class SessionError(AppError):
    """Persisted session data is malformed."""
