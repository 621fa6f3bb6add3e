from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from chatorder.core.database import Base


class MessengerMessageLog(Base):
    __tablename__ = "messenger_message_log"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    direction = Column(String, nullable=False)
    sender_id = Column(String, nullable=True)
    recipient_id = Column(String, nullable=True)
    message_type = Column(String, nullable=False)
    payload_json = Column(Text, nullable=True)
    status = Column(String, nullable=False)
    error = Column(Text, nullable=True)
    provider_message_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_messenger_message_log_tenant_created", MessengerMessageLog.tenant_id, MessengerMessageLog.created_at)
Index("ix_messenger_message_log_recipient", MessengerMessageLog.recipient_id)
