"""
Digital product (downloadable good).

`file_url` is the storage location handed back after a download is
authorized; it is never exposed in listings.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.core.config import get_settings
from storefront.db.base import Base, TimestampMixin


class DigitalProduct(Base, TimestampMixin):
    __tablename__ = "digital_products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    product_type = Column(String(20), nullable=False, default="pdf")  # pdf, audio, video, ebook
    file_url = Column(String(500), nullable=False)
    download_limit = Column(Integer, nullable=False, default=lambda: get_settings().DEFAULT_DOWNLOAD_LIMIT)
    is_published = Column(Boolean, nullable=False, default=True)

    order_items = relationship("OrderItem", back_populates="product")

    __table_args__ = (
        CheckConstraint("download_limit > 0", name="check_download_limit_positive"),
    )

    def __repr__(self) -> str:
        return f"<DigitalProduct(id={self.id}, slug={self.slug})>"
