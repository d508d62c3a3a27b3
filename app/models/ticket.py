"""
Modelo Ticket - Hilo de conversación con un cliente.

Un ticket por conversación activa. Se crea de forma perezosa con el
primer mensaje entrante y lo actualizan los agentes humanos y el núcleo.
"""

from sqlalchemy import Column, String, DateTime, Integer, JSON, UniqueConstraint

from app.core.database import Base
from app.schemas.message import utcnow


class TicketRecord(Base):
    """
    Conversación persistente entre un cliente y la empresa.
    El id es determinístico: hash(conversation_id, instance_id, sequence).
    """
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("conversation_id", "instance_id", "sequence", name="uq_ticket_conversation_sequence"),
    )

    id = Column(String(64), primary_key=True)
    conversation_id = Column(String(255), nullable=False, index=True)
    instance_id = Column(String(100), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="open")  # open, pending, in_progress, resolved, closed
    priority = Column(String(20), nullable=False, default="medium")  # low, medium, high, urgent
    client_tags = Column(JSON, default=list)
    client_name = Column(String(255))

    # === Agente asignado ===
    assigned_agent_id = Column(String(36), nullable=True)
    assigned_agent_kind = Column(String(10), nullable=True)  # human, ai
    assigned_agent_name = Column(String(255), nullable=True)
    ai_config = Column(JSON, nullable=True)

    # === Timestamps ===
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Ticket {self.id[:8]} {self.status}>"
