from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func

from chatorder.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    sender_id = Column(String(128), nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=False)
    order_number = Column(String, nullable=False)

    order_type_id = Column(String, nullable=True)
    payment_method_id = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    customer_contact = Column(String, nullable=True)
    customer_data_json = Column(Text, default="{}", nullable=False)
    items_json = Column(Text, default="[]", nullable=False)

    subtotal_cents = Column(Integer, nullable=False)
    delivery_fee_cents = Column(Integer, default=0, nullable=False)
    total_cents = Column(Integer, nullable=False)
    delivery_fee_pending = Column(Boolean, default=False, nullable=False)
    quote_ref = Column(String, nullable=True)
    delivery_order_ref = Column(String, nullable=True)
    needs_follow_up = Column(Boolean, default=False, nullable=False)

    status = Column(String, default="pending", nullable=False)
    source = Column(String, default="messenger", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
