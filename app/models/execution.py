"""
Modelo AgentExecution - Auditoría de decisiones y ejecuciones.

Solo se inserta, nunca se actualiza. message_id es único para que un
reprocesamiento del mismo evento no genere un segundo registro.
"""

from sqlalchemy import Column, String, DateTime, Integer, Float, Text, JSON

from app.core.database import Base
from app.schemas.message import utcnow


class AgentExecutionRecord(Base):
    __tablename__ = "agent_executions"

    id = Column(String(36), primary_key=True)
    message_id = Column(String(255), nullable=False, unique=True)
    ticket_id = Column(String(64), nullable=False, index=True)
    instance_id = Column(String(100), default="")
    agent_id = Column(String(36), nullable=True, index=True)
    rule_id = Column(String(36), nullable=True)
    assignment_state = Column(String(20), nullable=False)  # sticky, scored, rule_fallback, skipped, failed

    input = Column(Text, default="")
    output = Column(Text, default="")
    confidence = Column(Float, default=0.0)
    tokens_used = Column(Integer, default=0)
    execution_time_ms = Column(Integer, default=0)
    status = Column(String(20), nullable=False)  # success, low_confidence, error, skipped
    error = Column(Text, nullable=True)
    reasons = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow)
