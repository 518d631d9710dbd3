"""Error taxonomy for point billing and recharge operations."""

from __future__ import annotations

from typing import Optional


class PointsError(Exception):
    """Base error carrying a stable error code and the HTTP status it maps to."""

    status_code = 500

    def __init__(self, code: str, status_code: Optional[int] = None):
        super().__init__(code)
        self.code = code
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(PointsError):
    status_code = 400


class AccountNotFoundError(PointsError):
    status_code = 404

    def __init__(self, code: str = "ACCOUNT_NOT_FOUND"):
        super().__init__(code)


class DistributionNotFoundError(PointsError):
    status_code = 404

    def __init__(self, code: str = "DISTRIBUTION_NOT_FOUND"):
        super().__init__(code)


class OrderNotFoundError(PointsError):
    status_code = 404

    def __init__(self, code: str = "ORDER_NOT_FOUND"):
        super().__init__(code)


class InsufficientPointsError(PointsError):
    status_code = 402

    def __init__(self, code: str = "INSUFFICIENT_POINTS"):
        super().__init__(code)


class StorageUnavailableError(PointsError):
    """Infrastructure failure. Nothing was applied; safe to retry."""

    status_code = 500

    def __init__(self, code: str = "STORAGE_UNAVAILABLE"):
        super().__init__(code)
