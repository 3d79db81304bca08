"""
Database models.

Design principles:
  - integrations: one row per linked store, overwritten on reconnect
  - orders: local cache of upstream orders, merged on (integration_id, external_id)
  - raw_data keeps the full upstream payload for fields we don't map yet
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

PLATFORM_SHOPIFY = "shopify"
PLATFORM_WOOCOMMERCE = "woocommerce"

STATUS_ACTIVE = "active"
STATUS_REVOKED = "revoked"


class Base(DeclarativeBase):
    pass


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(String(255), nullable=False, index=True)   # identity provider user id
    platform = Column(String(20), nullable=False)               # shopify | woocommerce
    store_url = Column(String(500), nullable=False)

    # Shopify: API token. WooCommerce: consumer key / consumer secret.
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    scope = Column(String(255), nullable=True)

    status = Column(String(20), default=STATUS_ACTIVE, nullable=False, index=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    orders = relationship("Order", back_populates="integration")

    __table_args__ = (
        Index("ix_integrations_owner_store", "user_id", "platform", "store_url"),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    integration_id = Column(Uuid, ForeignKey("integrations.id"), nullable=False)
    external_id = Column(String(100), nullable=False)

    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)
    customer_name = Column(String(255), nullable=False, default="Guest")
    status = Column(String(50), nullable=True)
    ordered_at = Column(DateTime(timezone=True), nullable=True)
    raw_data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    synced_at = Column(DateTime(timezone=True), server_default=func.now())

    integration = relationship("Integration", back_populates="orders")

    __table_args__ = (
        Index("ux_orders_integration_external", "integration_id", "external_id", unique=True),
        Index("ix_orders_integration_ordered", "integration_id", "ordered_at"),
    )
