from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text

from chatorder.core.database import Base


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    # NULL means available for every order type
    order_type_id = Column(Integer, ForeignKey("order_types.id"), nullable=True)
    name = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    qr_code_url = Column(String, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
