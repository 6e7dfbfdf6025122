# Import all models to ensure they are registered with SQLAlchemy
from . import (
    availability_block,
    business,
    business_settings,
    notification,
    reservation,
    service,
    working_hours,
)

__all__ = [
    "availability_block",
    "business",
    "business_settings",
    "notification",
    "reservation",
    "service",
    "working_hours",
]
