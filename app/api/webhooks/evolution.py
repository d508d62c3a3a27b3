"""
Webhook para WhatsApp (Evolution API).

Recibe eventos del gateway, valida el sobre y delega en el pipeline.
Por defecto procesa en background para responder rápido al gateway.
"""

import hmac
from typing import Any, Dict

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from app.core.config import Settings, settings
from app.core.errors import MalformedEvent
from app.schemas.message import WebhookResponse
from app.services.normalizer import normalize_event
from app.services.orchestrator import MessagePipeline

router = APIRouter()
logger = structlog.get_logger()


MESSAGE_EVENT = "messages.upsert"


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", settings)


def _event_name(payload: Dict[str, Any]) -> str:
    # Evolution envía "messages.upsert" o "MESSAGES_UPSERT" según la versión
    return str(payload.get("event") or "").lower().replace("_", ".")


def _authorized(request: Request, payload: Dict[str, Any], secret: str) -> bool:
    if not secret:
        return True
    provided = request.headers.get("apikey") or str(payload.get("apikey") or "")
    return hmac.compare_digest(provided.encode(), secret.encode())


@router.post("/evolution", response_model=WebhookResponse)
async def evolution_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: MessagePipeline = Depends(get_pipeline),
    config: Settings = Depends(get_app_settings),
):
    """
    Recibe eventos de Evolution API.

    Solo `messages.upsert` se procesa; los demás eventos se confirman y
    se ignoran. Un payload malformado se confirma sin reintento.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("evolution_invalid_json")
        return WebhookResponse(status="ignored", error="invalid_json")

    if not isinstance(payload, dict):
        return WebhookResponse(status="ignored", error="invalid_payload")

    if not _authorized(request, payload, config.evolution_webhook_secret):
        logger.warning("evolution_webhook_unauthorized", instance=payload.get("instance"))
        return JSONResponse(
            status_code=401,
            content=WebhookResponse(status="error", error="unauthorized").model_dump()
        )

    event = _event_name(payload)
    instance_id = str(payload.get("instance") or "")
    if event != MESSAGE_EVENT:
        logger.debug("evolution_event_ignored", event=event, instance=instance_id)
        return WebhookResponse(status="ignored")

    if not config.webhook_async_processing:
        outcome = await pipeline.handle_inbound_event(instance_id, payload)
        if not outcome.ok and outcome.retryable:
            # 503 para que el gateway reenvíe el evento
            return JSONResponse(
                status_code=503,
                content=WebhookResponse(
                    status="error", message_id=outcome.message_id, error=outcome.reason
                ).model_dump()
            )
        return WebhookResponse(
            status="ok" if outcome.ok else "ignored",
            message_id=outcome.message_id,
            error=None if outcome.ok else outcome.reason,
        )

    # Validación síncrona: un evento malformado no llega al background
    try:
        message = normalize_event(instance_id, payload)
    except MalformedEvent as e:
        logger.warning("evolution_malformed_event", instance=instance_id, error=str(e))
        return WebhookResponse(status="ignored", error=e.describe())

    logger.info(
        "evolution_message_received",
        message_id=message.id,
        instance=instance_id,
        conversation_id=message.conversation_id,
        message_preview=message.text[:50]
    )

    background_tasks.add_task(process_event, pipeline, instance_id, payload)
    return WebhookResponse(status="ok", message_id=message.id)


@router.get("/evolution")
async def evolution_webhook_status():
    """Verificación de disponibilidad para el gateway."""
    return {"status": "ok", "service": "evolution-webhook"}


async def process_event(pipeline: MessagePipeline, instance_id: str, payload: Dict[str, Any]):
    """
    Procesa el evento en background.
    """
    try:
        outcome = await pipeline.handle_inbound_event(instance_id, payload)
    except Exception as e:
        logger.error("evolution_process_error", instance=instance_id, error=str(e), exc_info=True)
        return

    if not outcome.ok:
        logger.warning(
            "evolution_event_failed",
            message_id=outcome.message_id,
            reason=outcome.reason,
            retryable=outcome.retryable
        )
