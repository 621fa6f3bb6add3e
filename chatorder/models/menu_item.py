from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String

from chatorder.core.database import Base


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (Index("ix_menu_items_tenant_category", "tenant_id", "category_id"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    category_id = Column(Integer, ForeignKey("menu_categories.id"), nullable=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    price_cents = Column(Integer, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
