"""
Orders and order items.

Written by the checkout flow; this service only reads them to answer
"does user X hold a completed purchase of product Y".
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Index
from sqlalchemy.orm import relationship

from storefront.db.base import Base, TimestampMixin

ORDER_PENDING = "pending"
ORDER_COMPLETED = "completed"
ORDER_REFUNDED = "refunded"
ORDER_CANCELLED = "cancelled"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ORDER_PENDING)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order")

    __table_args__ = (
        Index("ix_orders_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, user={self.user_id}, status={self.status})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    digital_product_id = Column(Integer, ForeignKey("digital_products.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")
    product = relationship("DigitalProduct", back_populates="order_items")
