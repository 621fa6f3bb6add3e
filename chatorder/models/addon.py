from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from chatorder.core.database import Base


class Addon(Base):
    __tablename__ = "addons"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    price_cents = Column(Integer, default=0, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
