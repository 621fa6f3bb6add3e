from sqlalchemy import Boolean, Column, DateTime, String, func

from chatorder.core.database import Base


class MessengerConfig(Base):
    __tablename__ = "messenger_config"

    tenant_id = Column(String(64), primary_key=True)
    page_id = Column(String, nullable=True)
    page_name = Column(String, nullable=True)
    page_access_token = Column(String, nullable=True)
    verify_token = Column(String, nullable=True)
    is_enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
