"""
Normalizador - Convierte eventos crudos del gateway en InboundMessage.

Soporta el objeto `data` de un evento `messages.upsert` de Evolution API
o el sobre completo `{event, instance, data}`. Es una función pura.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

import structlog

from app.core.errors import MalformedEvent
from app.schemas.message import InboundMessage

logger = structlog.get_logger()


# messageType de Evolution -> tipo canónico
MESSAGE_TYPE_MAP = {
    "conversation": "text",
    "extendedTextMessage": "text",
    "imageMessage": "image",
    "audioMessage": "audio",
    "pttMessage": "audio",
    "videoMessage": "video",
    "documentMessage": "document",
    "documentWithCaptionMessage": "document",
}

# Claves de `message` que no describen contenido
_NON_CONTENT_KEYS = {"messageContextInfo", "contextInfo", "base64"}


def normalize_event(instance_id: str, raw_payload: Any) -> InboundMessage:
    """
    Normaliza un evento del gateway.

    Nunca falla por contenido desconocido: los tipos desconocidos se
    normalizan como `document` con texto vacío (o el caption si existe)
    y `supported=False`.

    Raises:
        MalformedEvent: si el payload no es un objeto o le falta
            el id del mensaje o el id de la conversación.
    """
    if not isinstance(raw_payload, Mapping):
        raise MalformedEvent("payload must be an object")

    data = raw_payload.get("data") if "data" in raw_payload else raw_payload
    if not isinstance(data, Mapping):
        raise MalformedEvent("event data must be an object")

    instance_id = instance_id or raw_payload.get("instance") or ""

    key = data.get("key") or {}
    if not isinstance(key, Mapping):
        raise MalformedEvent("message key must be an object")

    message_id = key.get("id") or data.get("id")
    conversation_id = key.get("remoteJid") or data.get("conversationId")
    if not message_id:
        raise MalformedEvent("missing message id")
    if not conversation_id:
        raise MalformedEvent("missing conversation id")

    content = data.get("message") or {}
    if not isinstance(content, Mapping):
        content = {}

    original_type = data.get("messageType")
    if not isinstance(original_type, str) or not original_type:
        original_type = _infer_type(content)
    kind, text, supported = _extract_content(original_type, content)

    if not supported:
        logger.info(
            "unsupported_message_kind",
            message_id=message_id,
            original_type=original_type
        )

    return InboundMessage(
        id=str(message_id),
        conversation_id=str(conversation_id),
        sender_id=str(key.get("participant") or conversation_id),
        sender_name=_as_text(data.get("pushName")) or None,
        instance_id=str(instance_id),
        text=text,
        kind=kind,
        occurred_at=_parse_timestamp(data.get("messageTimestamp")),
        from_self=bool(key.get("fromMe", False)),
        original_type=original_type,
        supported=supported,
    )


def _infer_type(content: Mapping[str, Any]) -> Optional[str]:
    for name in content:
        if name not in _NON_CONTENT_KEYS:
            return name
    return None


def _extract_content(message_type: Optional[str], content: Mapping[str, Any]) -> Tuple[str, str, bool]:
    """Retorna (kind, text, supported)."""
    if message_type == "conversation":
        return "text", _as_text(content.get("conversation")), True

    body = _mapping(content.get(message_type) if message_type else None)

    if message_type == "extendedTextMessage":
        return "text", _as_text(body.get("text")), True

    if message_type == "documentWithCaptionMessage":
        # El documento real viene anidado
        inner = _mapping(_mapping(body.get("message")).get("documentMessage"))
        return "document", _as_text(inner.get("caption")), True

    kind = MESSAGE_TYPE_MAP.get(message_type)
    if kind is not None:
        return kind, _as_text(body.get("caption")), True

    return "document", _as_text(body.get("caption")), False


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_timestamp(value: Any) -> datetime:
    """Epoch en segundos o milisegundos; ahora (UTC) si falta o es inválido."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)
    if seconds > 9999999999:
        seconds = seconds / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return datetime.now(timezone.utc)
