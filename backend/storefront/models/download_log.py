"""
Append-only download log. Rows are the source of truth for how many
downloads a purchase has used.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, func

from storefront.db.base import Base


class DownloadLog(Base):
    __tablename__ = "download_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    digital_product_id = Column(Integer, ForeignKey("digital_products.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    downloaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_download_logs_scope", "user_id", "digital_product_id", "order_id"),
        Index("ix_download_logs_downloaded_at", "downloaded_at"),
    )

    def __repr__(self) -> str:
        return f"<DownloadLog(id={self.id}, user={self.user_id}, product={self.digital_product_id})>"
