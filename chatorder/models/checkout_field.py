from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text

from chatorder.core.database import Base


class CheckoutField(Base):
    __tablename__ = "checkout_fields"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    order_type_id = Column(Integer, ForeignKey("order_types.id"), index=True, nullable=False)
    field_key = Column(String, nullable=False)
    label = Column(String, nullable=False)
    # text | textarea | phone | email | number | select | location
    field_type = Column(String, default="text", nullable=False)
    is_required = Column(Boolean, default=True, nullable=False)
    options_json = Column(Text, nullable=True)
    placeholder = Column(String, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
