"""
Modelos de agentes IA y reglas de activación.
"""

from sqlalchemy import Column, String, DateTime, Integer, Float, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
import uuid

from app.core.database import Base
from app.schemas.message import utcnow


class AgentRecord(Base):
    """
    Configuración de un agente IA.
    """
    __tablename__ = "ai_agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, inactive
    description = Column(Text, default="")
    category = Column(String(50))

    # === Perfil de selección ===
    keywords = Column(JSON, default=list)
    capabilities = Column(JSON, default=list)
    availability = Column(Float, default=1.0)
    priority = Column(Integer, default=5)
    tags = Column(JSON, default=list)

    # === Ejecución ===
    prompt_template = Column(Text, default="")
    model_params = Column(JSON, default=dict)
    max_interactions = Column(Integer, default=10)
    escalate_to_human = Column(Boolean, default=True)

    # === Timestamps ===
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    rules = relationship("ActivationRuleRecord", back_populates="agent", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Agent {self.name} ({self.status})>"


class ActivationRuleRecord(Base):
    """
    Regla de activación con prioridad 1-10 (mayor gana).
    """
    __tablename__ = "agent_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id = Column(String(36), ForeignKey("ai_agents.id"), nullable=False, index=True)
    name = Column(String(255), default="")
    description = Column(Text, default="")
    priority = Column(Integer, nullable=False, default=5)
    active = Column(Boolean, nullable=False, default=True)
    conditions = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    agent = relationship("AgentRecord", back_populates="rules")
