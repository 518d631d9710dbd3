"""Routers package."""

from . import (
    health,
    billing,
    recharge,
    admin,
    monitor,
)
