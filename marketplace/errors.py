"""Error taxonomy shared by the stores, the workflows and the routers.

Business-rule violations are raised where they are detected and rendered
verbatim by the exception handlers in ``main``.
"""

from typing import Optional

from fastapi import status


class MarketplaceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT


class InvalidState(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientStock(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class Inactive(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class MixedSellers(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class EmptyOrder(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
