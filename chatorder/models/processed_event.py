from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, func

from chatorder.core.database import Base


class ProcessedEvent(Base):
    __tablename__ = "processed_events"
    __table_args__ = (UniqueConstraint("tenant_id", "sender_id", "event_id", name="uq_processed_events_event"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    sender_id = Column(String(128), nullable=False)
    event_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
