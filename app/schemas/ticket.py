"""
Esquemas de tickets y vinculación de agentes.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.message import utcnow


TicketStatus = Literal["open", "pending", "in_progress", "resolved", "closed"]
TicketPriority = Literal["low", "medium", "high", "urgent"]

# Estados en los que un ticket sigue activo para la conversación
ACTIVE_STATUSES = ("open", "pending", "in_progress")
# Estados en los que un agente IA fijo puede responder
STICKY_STATUSES = ("open", "pending")


class AgentBinding(BaseModel):
    """Agente asignado a un ticket (humano o IA)."""
    agent_id: str
    kind: Literal["human", "ai"] = "ai"
    display_name: str = ""


class EscalationConfig(BaseModel):
    max_interactions: int = Field(default=10, ge=1)
    escalate_to_human: bool = True


class AiConfig(BaseModel):
    """
    Configuración de IA del ticket.
    Con auto_response activo el agente asignado responde sin re-selección.
    """
    activation_mode: Literal["immediate", "manual"] = "immediate"
    auto_response: bool = True
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)


class Ticket(BaseModel):
    """
    Hilo de conversación entre un cliente y la empresa.
    """
    id: str
    conversation_id: str
    instance_id: str
    sequence: int = 0
    status: TicketStatus = "open"
    priority: TicketPriority = "medium"
    client_tags: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    assigned_agent: Optional[AgentBinding] = None
    ai_config: Optional[AiConfig] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def has_sticky_ai_agent(self) -> bool:
        """Agente IA con auto-respuesta en un ticket abierto o pendiente."""
        return (
            self.assigned_agent is not None
            and self.assigned_agent.kind == "ai"
            and self.ai_config is not None
            and self.ai_config.auto_response
            and self.status in STICKY_STATUSES
        )
