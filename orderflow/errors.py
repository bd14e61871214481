from __future__ import annotations

from typing import Iterable, Optional


class CheckoutError(Exception):
    """Base class for every error reported by the ordering core."""


class ValidationError(CheckoutError):
    """Bad user input: credential format, empty address, malformed cart line."""


class NotAllowedError(CheckoutError):
    """The operation is not allowed in the current state (e.g. cancel after confirmation)."""


class UnavailableError(CheckoutError):
    def __init__(self, message: str, skus: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.skus = tuple(skus)


class OrderNotFoundError(CheckoutError):
    pass


class TransientError(CheckoutError):
    """Collaborator I/O failed; safe to retry, nothing was applied."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
