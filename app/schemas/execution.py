"""
Esquemas de ejecución de agentes y resultados del pipeline.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.message import utcnow


ExecutionStatus = Literal["success", "low_confidence", "error", "skipped"]
AssignmentState = Literal["sticky", "scored", "rule_fallback", "skipped", "failed"]


class GenerationResult(BaseModel):
    """Respuesta del servicio de modelo de lenguaje."""
    text: str
    confidence: float = Field(..., ge=0, le=1)
    tokens_used: int = 0
    latency_ms: int = 0


class DeliveryReceipt(BaseModel):
    """Confirmación de entrega del gateway."""
    message_id: Optional[str] = None
    status: str = "sent"
    raw: Dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """
    Resultado de la compuerta de ejecución para un mensaje.
    """
    status: ExecutionStatus
    agent_id: str
    rule_id: Optional[str] = None
    input: str = ""
    output: str = ""
    confidence: float = 0.0
    tokens_used: int = 0
    execution_time_ms: int = 0
    dispatched: bool = False
    error: Optional[str] = None
    receipt: Optional[DeliveryReceipt] = None


class AgentExecution(BaseModel):
    """
    Registro de auditoría inmutable de un intento de ejecución.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    message_id: str
    ticket_id: str
    instance_id: str = ""
    agent_id: Optional[str] = None
    rule_id: Optional[str] = None
    assignment_state: AssignmentState
    input: str = ""
    output: str = ""
    confidence: float = 0.0
    tokens_used: int = 0
    execution_time_ms: int = 0
    status: ExecutionStatus
    error: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class PipelineOutcome(BaseModel):
    """
    Resultado de procesar un evento del gateway.
    `ok=False` solo para eventos que el transporte debe reintentar o descartar.
    """
    ok: bool = True
    message_id: Optional[str] = None
    ticket_id: Optional[str] = None
    state: Optional[AssignmentState] = None
    status: Optional[ExecutionStatus] = None
    reason: Optional[str] = None
    retryable: bool = False
