from sqlalchemy import Boolean, Column, DateTime, Float, String, func

from chatorder.core.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    currency = Column(String(3), nullable=False, default="PHP")
    # pickup point used for delivery quotes
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    contact_phone = Column(String, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    lalamove_enabled = Column(Boolean, default=False, nullable=False)
    lalamove_api_key = Column(String, nullable=True)
    lalamove_secret_key = Column(String, nullable=True)
    lalamove_market = Column(String, nullable=True)
    lalamove_service_type = Column(String, default="MOTORCYCLE", nullable=False)
    lalamove_sandbox = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
