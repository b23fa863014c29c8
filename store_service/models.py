"""Database models for the store service."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

# Largest value an Integer primary key column holds (Postgres int4)
MAX_ID = 2**31 - 1


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="user")
    password_changed_at = Column(DateTime, nullable=True)
    password_reset_token = Column(String(64), nullable=True, index=True)
    password_reset_expires = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def changed_password_after(self, issued_at: int) -> bool:
        """True when the password changed after a token issued at ``issued_at`` (epoch seconds)."""
        if self.password_changed_at is None:
            return False
        changed = self.password_changed_at.replace(tzinfo=timezone.utc).timestamp()
        return int(changed) > issued_at


class Product(Base):
    """Product model. Inactive rows are soft-deleted."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=False, index=True)
    image_url = Column(String(500), nullable=False, default="")
    featured = Column(Boolean, nullable=False, default=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    created_by = relationship("User")

    @property
    def out_of_stock(self) -> bool:
        return self.quantity <= 0

    def is_in_stock(self, quantity: int) -> bool:
        return self.quantity >= quantity

    def update_stock(self, quantity: int) -> int:
        """Remove ``quantity`` units and return what is left."""
        self.quantity -= quantity
        return self.quantity


class Order(Base):
    """Order model."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(Float, nullable=False, default=0.0)
    shipping_address = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    payment_status = Column(String(16), nullable=False, default="pending", index=True)
    payment_method = Column(String(16), nullable=False, default="paystack")
    payment_reference = Column(String(100), nullable=True, index=True)
    payment_transaction_id = Column(String(100), nullable=True)
    payment_authorization_url = Column(String(500), nullable=True)
    payment_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def payment_details(self) -> Dict[str, Any]:
        return {
            "reference": self.payment_reference,
            "transaction_id": self.payment_transaction_id,
            "authorization_url": self.payment_authorization_url,
            "payment_date": self.payment_date,
        }

    def recalculate_total(self) -> float:
        self.total_amount = sum(item.price * item.quantity for item in self.items)
        return self.total_amount

    def is_owned_by(self, user: Optional[User]) -> bool:
        return user is not None and self.user_id == user.id


class OrderItem(Base):
    """Line item snapshot: product name and price as they were at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    name = Column(String(100), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
