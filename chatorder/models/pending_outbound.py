from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from chatorder.core.database import Base


class PendingOutbound(Base):
    __tablename__ = "pending_outbound"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    recipient_id = Column(String(128), nullable=False)
    message_json = Column(Text, nullable=False)
    reason = Column(String, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_pending_outbound_recipient", PendingOutbound.tenant_id, PendingOutbound.recipient_id)
