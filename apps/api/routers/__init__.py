"""Routers package."""

from . import (
    health,
    payment_verification,
    credits,
    trial,
    billing,
    qr,
    memberships,
)
