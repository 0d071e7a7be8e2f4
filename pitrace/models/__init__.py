"""Models package for database models."""

from pitrace.models.user import User
from pitrace.models.product import Product
from pitrace.models.payment import PaymentRecord

__all__ = [
    "User",
    "Product",
    "PaymentRecord",
]
