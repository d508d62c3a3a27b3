"""
Modelo de mensajes de conversación.

Historial corto por conversación, usado como contexto para
la selección de agentes y para construir el prompt.
"""

from sqlalchemy import Column, String, DateTime, Text, Index

from app.core.database import Base
from app.schemas.message import utcnow


class ConversationMessageRecord(Base):
    """
    Un mensaje individual (cliente o agente) en una conversación.
    """
    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("ix_conversation_messages_lookup", "conversation_id", "instance_id", "created_at"),
    )

    id = Column(String(255), primary_key=True)
    conversation_id = Column(String(255), nullable=False)
    instance_id = Column(String(100), nullable=False)
    role = Column(String(10), nullable=False)  # client, agent
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
