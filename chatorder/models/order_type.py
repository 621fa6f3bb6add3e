from sqlalchemy import Boolean, Column, Integer, String

from chatorder.core.database import Base


class OrderType(Base):
    __tablename__ = "order_types"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    # dine_in | pickup | delivery
    kind = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
