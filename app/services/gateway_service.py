"""
Cliente del gateway de WhatsApp (Evolution API).
"""

import httpx
import structlog

from app.core.config import settings
from app.core.errors import DispatchFailure
from app.schemas.execution import DeliveryReceipt

logger = structlog.get_logger()


def jid_to_number(conversation_id: str) -> str:
    """5511999999999@s.whatsapp.net -> 5511999999999. Los grupos se envían con el JID completo."""
    if conversation_id.endswith("@g.us"):
        return conversation_id
    return conversation_id.split("@", 1)[0]


class EvolutionGatewayClient:
    """
    Envía mensajes de texto por una instancia de Evolution API.
    Lanza DispatchFailure ante cualquier error; nunca reintenta.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.base_url = (base_url if base_url is not None else settings.evolution_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.evolution_api_key
        self.timeout = timeout or settings.send_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def send(self, instance_id: str, conversation_id: str, text: str) -> DeliveryReceipt:
        if not self.configured:
            logger.warning("gateway_not_configured", instance_id=instance_id)
            raise DispatchFailure("Evolution API no está configurada")

        url = f"{self.base_url}/message/sendText/{instance_id}"
        body = {"number": jid_to_number(conversation_id), "text": text}

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    headers={"apikey": self.api_key, "Content-Type": "application/json"},
                    json=body,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "gateway_send_rejected",
                instance_id=instance_id,
                status=e.response.status_code,
                body=e.response.text[:200]
            )
            raise DispatchFailure(f"gateway returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("gateway_send_error", instance_id=instance_id, error=str(e))
            raise DispatchFailure(str(e)) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"response": payload}

        return DeliveryReceipt(
            message_id=(payload.get("key") or {}).get("id"),
            status=str(payload.get("status") or "sent"),
            raw=payload,
        )
