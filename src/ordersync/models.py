#!/usr/bin/env python3

"""
    SQLAlchemy models for the local side of the synchronization.

    - SyncStateEntry: key/value sync state (watermark, import lock, flags)
    - Order / OrderComment: orders created from remote orders
    - Product: local catalog with available quantity
    - Warehouse: fulfillment locations referenced by shipments
"""

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import Column, Integer, String, DateTime, Text, Float, ForeignKey
from datetime import datetime
import logging

Base = declarative_base()

lgr = logging.getLogger(__name__)


def utcnow():
    return datetime.utcnow()


class SyncStateEntry(Base):
    """Persisted sync state, values are JSON encoded."""

    __tablename__ = 'sync_state'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SyncStateEntry(key={self.key}, value={self.value})>"


class Order(Base):
    """Local order created from a remote order."""

    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True, autoincrement=True)
    unique_id = Column(String(32), unique=True, nullable=False, index=True)
    order_ref = Column(String(100), unique=True, nullable=False, index=True)
    store = Column(String(100), nullable=True)
    status = Column(String(32), nullable=False, default="new")
    shipping_method = Column(String(100), nullable=True)
    source = Column(String(150), nullable=True)
    items_json = Column(Text, nullable=False)
    address_json = Column(Text, nullable=False)
    options_json = Column(Text, nullable=True)
    ordered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    comments = relationship("OrderComment", back_populates="order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Order(unique_id={self.unique_id}, order_ref={self.order_ref}, status={self.status})>"


class OrderComment(Base):
    __tablename__ = 'order_comments'

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="comments")


class Product(Base):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sku = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    # Signed: negative when backordered
    qty_available = Column(Float, nullable=False, default=0)

    def __repr__(self):
        return f"<Product(sku={self.sku}, qty_available={self.qty_available})>"


class Warehouse(Base):
    __tablename__ = 'warehouses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
