from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from chatorder.core.database import Base


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"
    __table_args__ = (UniqueConstraint("tenant_id", "sender_id", name="uq_conversation_sessions_sender"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    sender_id = Column(String(128), nullable=False)

    state = Column(String, default="menu", nullable=False)
    # JSON serialized session parts
    cart_json = Column(Text, default="[]", nullable=False)
    checkout_json = Column(Text, default="{}", nullable=False)
    pending_selection_json = Column(Text, nullable=True)
    browsing_category_id = Column(String, nullable=True)
    last_order_ref = Column(String, nullable=True)

    last_event_id = Column(String, nullable=True)
    last_inbound_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
