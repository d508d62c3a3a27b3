"""
Esquemas para mensajes normalizados.

Todos los eventos del gateway (Evolution API) se normalizan
a este formato estándar antes de procesarse.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal
from datetime import datetime, timezone


MessageKind = Literal["text", "image", "audio", "video", "document"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboundMessage(BaseModel):
    """
    Formato estándar para un mensaje recibido del gateway.
    Inmutable una vez normalizado; `id` es la llave de idempotencia.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "3EB0C767D26A1D9B",
                "conversation_id": "5511999999999@s.whatsapp.net",
                "sender_id": "5511999999999@s.whatsapp.net",
                "instance_id": "shop-1",
                "text": "qual o preço do plano premium?",
                "kind": "text",
                "occurred_at": "2024-01-15T10:30:00Z",
                "from_self": False,
            }
        },
    )

    id: str = Field(..., description="ID único del mensaje en el gateway")
    conversation_id: str = Field(..., description="remoteJid de la conversación")
    sender_id: str = Field(..., description="Remitente (participant en grupos)")
    sender_name: Optional[str] = Field(None, description="pushName del remitente")
    instance_id: str = Field(..., description="Instancia del gateway")
    text: str = Field(default="", description="Texto o caption del mensaje")
    kind: MessageKind = Field(default="text")
    occurred_at: datetime = Field(default_factory=utcnow)
    from_self: bool = Field(default=False, description="Enviado por la propia instancia")
    original_type: Optional[str] = Field(None, description="messageType original del gateway")
    supported: bool = Field(default=True, description="False si el tipo era desconocido")

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())


class HistoryTurn(BaseModel):
    """
    Un turno del historial de conversación.
    """
    role: Literal["client", "agent"]
    content: str
    occurred_at: datetime = Field(default_factory=utcnow)

    def as_line(self) -> str:
        speaker = "Atendente" if self.role == "agent" else "Cliente"
        return f"{speaker}: {self.content}"


class WebhookResponse(BaseModel):
    """
    Respuesta estándar para webhooks.
    """
    status: str = Field(default="ok")
    message_id: Optional[str] = None
    error: Optional[str] = None
