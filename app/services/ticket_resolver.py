"""
Resolución de tickets - Busca o crea el ticket de una conversación.
"""

import hashlib
from typing import Optional

import structlog

from app.core.errors import NoTicket, StorageError
from app.schemas.ticket import Ticket
from app.services.interfaces import TicketStore

logger = structlog.get_logger()


def ticket_id_for(conversation_id: str, instance_id: str, sequence: int = 0) -> str:
    """
    Id determinístico del ticket.
    Dos handlers concurrentes para la misma conversación calculan el mismo id.
    """
    key = f"{instance_id}|{conversation_id}|{sequence}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


class TicketResolver:
    """
    Obtiene el ticket activo de una conversación o crea uno nuevo.

    La creación es un create-if-absent en el almacenamiento (no lectura
    seguida de escritura), así que los handlers concurrentes convergen
    en una sola fila.
    """

    def __init__(self, store: TicketStore):
        self._store = store

    async def resolve(
        self,
        conversation_id: str,
        instance_id: str,
        *,
        client_name: Optional[str] = None
    ) -> Ticket:
        try:
            ticket = await self._store.get_open_ticket_by_conversation(conversation_id, instance_id)
            if ticket:
                logger.debug("ticket_found", ticket_id=ticket.id, status=ticket.status)
                return ticket

            # Un ticket cerrado no se reabre: se crea el siguiente de la secuencia
            latest = await self._store.get_latest_ticket(conversation_id, instance_id)
            if latest and latest.is_active:
                # Creado por un handler concurrente entre ambas lecturas
                return latest
            sequence = latest.sequence + 1 if latest else 0

            candidate = Ticket(
                id=ticket_id_for(conversation_id, instance_id, sequence),
                conversation_id=conversation_id,
                instance_id=instance_id,
                sequence=sequence,
                status="open",
                client_name=client_name,
            )
            ticket = await self._store.upsert_ticket(candidate)
        except StorageError as e:
            logger.error("ticket_resolve_error", conversation_id=conversation_id, error=str(e))
            raise NoTicket(str(e)) from e

        logger.info(
            "ticket_resolved",
            ticket_id=ticket.id,
            conversation_id=conversation_id,
            sequence=ticket.sequence
        )
        return ticket
