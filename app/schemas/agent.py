"""
Esquemas de agentes, reglas de activación y contexto de selección.
"""

import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.message import HistoryTurn, MessageKind, utcnow
from app.schemas.ticket import TicketPriority


class ModelParams(BaseModel):
    model: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=300, ge=1)


class AgentProfile(BaseModel):
    """
    Configuración de un agente IA. Solo lectura para el núcleo.
    """
    id: str
    name: str
    status: Literal["active", "inactive"] = "active"
    description: str = ""
    category: Optional[str] = Field(None, description="vendas, suporte, tecnico, atendimento, financeiro")
    keywords: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    prompt_template: str = ""
    model_params: ModelParams = Field(default_factory=ModelParams)
    availability: float = Field(default=1.0, ge=0, le=1)
    priority: int = Field(default=5, ge=1, le=10)
    max_interactions: int = Field(default=10, ge=1)
    escalate_to_human: bool = True
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class TimeWindow(BaseModel):
    """Ventana horaria HH:MM, inclusiva. Puede cruzar medianoche."""
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"Hora inválida: {value!r} (formato HH:MM)")
        return value


class RuleConditions(BaseModel):
    """
    Grupos de condiciones. Conjuntivo entre grupos, disyuntivo dentro de cada grupo.
    Un grupo vacío es comodín.
    """
    message_kinds: List[MessageKind] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    time_window: Optional[TimeWindow] = None
    weekdays: List[int] = Field(default_factory=list, description="0=domingo .. 6=sábado")
    ticket_priority: List[TicketPriority] = Field(default_factory=list)
    client_tags: List[str] = Field(default_factory=list)
    instance_ids: List[str] = Field(default_factory=list)

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: List[int]) -> List[int]:
        invalid = [day for day in value if day < 0 or day > 6]
        if invalid:
            raise ValueError(f"Días inválidos: {invalid}")
        return value

    @property
    def is_empty(self) -> bool:
        return not (
            self.message_kinds
            or self.keywords
            or self.time_window
            or self.weekdays
            or self.ticket_priority
            or self.client_tags
            or self.instance_ids
        )


class ActivationRule(BaseModel):
    id: str
    agent_id: str
    name: str = ""
    description: str = ""
    priority: int = Field(default=5, ge=1, le=10)
    active: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    created_at: datetime = Field(default_factory=utcnow)


class MatchedRule(BaseModel):
    rule: ActivationRule
    matched_conditions: List[str] = Field(default_factory=list)

    @property
    def agent_id(self) -> str:
        return self.rule.agent_id

    @property
    def priority(self) -> int:
        return self.rule.priority


class MessageContext(BaseModel):
    """
    Contexto de un mensaje para la selección inteligente de agentes.
    Los campos de análisis se completan con el enriquecimiento.
    """
    text: str
    kind: MessageKind = "text"
    sender_id: str = ""
    sender_name: Optional[str] = None
    instance_id: str = ""
    occurred_at: datetime = Field(default_factory=utcnow)
    history: List[HistoryTurn] = Field(default_factory=list)
    ticket_priority: TicketPriority = "medium"
    client_tags: List[str] = Field(default_factory=list)

    category: Optional[str] = None
    urgency: Optional[Literal["low", "medium", "high", "urgent"]] = None
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None
    keywords: List[str] = Field(default_factory=list)


class SelectionCandidate(BaseModel):
    """Resultado transitorio del selector. Nunca se persiste."""
    agent: AgentProfile
    score: float = Field(..., ge=0, le=1)
    confidence: float = Field(..., ge=0, le=1)
    reasons: List[str] = Field(default_factory=list)
    matched_keywords: List[str] = Field(default_factory=list)
    category_match: bool = False
