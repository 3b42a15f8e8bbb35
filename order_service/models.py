from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from order_service.database import Base
import datetime

from order_service.billing import PaymentStatus
from order_service.lifecycle import KitchenStatus, OrderStatus


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    terminal = Column(Integer, index=True, nullable=True)
    branch_id = Column(Integer, index=True, nullable=True)
    created_by = Column(Integer, nullable=True)

    order_type = Column(String(20), nullable=False)
    status = Column(String(30), default=OrderStatus.PENDING.value, index=True)

    # Dine In only
    hall_id = Column(Integer, nullable=True)
    table_id = Column(Integer, nullable=True, index=True)

    subtotal = Column(Float, default=0)
    service_charge = Column(Float, default=0)
    discount_amount = Column(Float, default=0)
    net_total = Column(Float, default=0)

    payment_mode = Column(String(20), nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    note = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    bill = relationship("Bill", back_populates="order", uselist=False, cascade="all, delete-orphan")

    @property
    def display_id(self):
        return f"ORD-{self.id}"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True)

    dish_id = Column(Integer)
    dish_name = Column(String(100))
    # Captured when the item is added; catalog price changes never touch it
    unit_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Float, nullable=False)

    kitchen_status = Column(String(20), default=KitchenStatus.PENDING.value)
    note = Column(String(255), nullable=True)

    order = relationship("Order", back_populates="items")


class Bill(Base):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True)
    # One bill per order
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)

    total_amount = Column(Float, nullable=False)
    service_charge = Column(Float, default=0)
    discount_percentage = Column(Float, default=0)
    discount = Column(Float, default=0)
    grand_total = Column(Float, nullable=False)

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.UNPAID.value, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    cash_received = Column(Float, nullable=True)
    change_amount = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="bill")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, index=True, nullable=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)

    # Outstanding credit
    balance = Column(Float, default=0)
    # 0 = no limit
    credit_limit = Column(Float, default=0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    receivings = relationship("Receiving", back_populates="customer", cascade="all, delete-orphan")


class Receiving(Base):
    __tablename__ = "receivings"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True)
    branch_id = Column(Integer, index=True, nullable=True)
    amount = Column(Float, nullable=False)
    payment_method = Column(String(20), nullable=False)
    received_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    customer = relationship("Customer", back_populates="receivings")


class PendingTableSync(Base):
    __tablename__ = "pending_table_syncs"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, nullable=False, index=True)
    target_status = Column(String(20), nullable=False)
    order_id = Column(Integer, nullable=True)
    attempts = Column(Integer, default=0)
    last_error = Column(String(500), nullable=True)
    resolved = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    scope = Column(String(100), nullable=False)
    status_code = Column(Integer, nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
