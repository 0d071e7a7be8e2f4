"""
Catalog Service - read access to tracked products for payment subjects.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pitrace.models.product import Product

logger = logging.getLogger(__name__)


class CatalogService:
    """Resolves product references for payments."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Get product by ID."""
        async with self.session_maker() as session:
            return await session.get(Product, product_id)
