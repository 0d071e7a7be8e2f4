"""Product model - the fields payments read from tracked products."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from pitrace.database import Base, UTCDateTime


class Product(Base):
    """Tracked product. Catalog maintenance lives outside this service."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Supply chain fingerprint
    hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name}>"
