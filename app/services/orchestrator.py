"""
Orquestador - Coordina el procesamiento de un evento del gateway.

    evento -> normalizar -> ticket -> asignación -> ejecución -> auditoría

Solo un evento malformado o la imposibilidad de obtener el ticket
terminan el procesamiento con error; cualquier otra condición queda
registrada en la auditoría y el pipeline retorna normalmente.
"""

import time
from typing import Any, List

import structlog

from app.core.config import PipelinePolicy
from app.core.errors import MalformedEvent, NoTicket, StorageError
from app.schemas.execution import PipelineOutcome
from app.schemas.message import HistoryTurn, InboundMessage
from app.schemas.ticket import Ticket
from app.services.assignment import AssignmentOrchestrator, AssignmentState
from app.services.auditor import ExecutionAuditor
from app.services.deduplication import EventDeduplicator
from app.services.execution_gate import ExecutionGate
from app.services.interfaces import ConversationHistory
from app.services.normalizer import normalize_event
from app.services.ticket_resolver import TicketResolver

logger = structlog.get_logger()


class MessagePipeline:
    def __init__(
        self,
        resolver: TicketResolver,
        assignment: AssignmentOrchestrator,
        gate: ExecutionGate,
        auditor: ExecutionAuditor,
        history: ConversationHistory,
        deduplicator: EventDeduplicator,
        policy: PipelinePolicy,
    ):
        self.resolver = resolver
        self.assignment = assignment
        self.gate = gate
        self.auditor = auditor
        self.history = history
        self.deduplicator = deduplicator
        self.policy = policy

    async def handle_inbound_event(self, instance_id: str, raw_payload: Any) -> PipelineOutcome:
        """
        Procesa un evento messages.upsert. Nunca lanza excepciones de dominio.
        """
        start_time = time.time()

        try:
            message = normalize_event(instance_id, raw_payload)
        except MalformedEvent as e:
            logger.warning("malformed_event_dropped", instance_id=instance_id, error=str(e))
            return PipelineOutcome(ok=False, reason=e.describe())

        if message.from_self:
            logger.debug("own_message_ignored", message_id=message.id)
            return PipelineOutcome(message_id=message.id, reason="from_self")

        if not await self.deduplicator.claim(message.instance_id, message.id):
            return PipelineOutcome(message_id=message.id, reason="duplicate")

        logger.info(
            "processing_message",
            message_id=message.id,
            instance_id=message.instance_id,
            conversation_id=message.conversation_id,
            kind=message.kind,
            message_preview=message.text[:50]
        )

        try:
            ticket = await self.resolver.resolve(
                message.conversation_id,
                message.instance_id,
                client_name=message.sender_name
            )
        except NoTicket as e:
            # Se libera el reclamo para que la reentrega del gateway se procese
            await self.deduplicator.release(message.instance_id, message.id)
            return PipelineOutcome(
                ok=False, message_id=message.id, reason=e.describe(), retryable=True
            )

        if await self._already_recorded(message):
            logger.info("message_already_processed", message_id=message.id, ticket_id=ticket.id)
            return PipelineOutcome(message_id=message.id, ticket_id=ticket.id, reason="duplicate")

        await self._remember(message.id, message, HistoryTurn(
            role="client", content=message.text, occurred_at=message.occurred_at
        ))

        if not message.has_text:
            logger.info("message_without_text_ignored", message_id=message.id, kind=message.kind)
            return PipelineOutcome(message_id=message.id, ticket_id=ticket.id, reason="no_text")

        history = await self._recent_history(ticket, message)
        outcome = await self._assign_and_execute(ticket, message, history)

        logger.info(
            "message_processed",
            message_id=message.id,
            ticket_id=outcome.ticket_id,
            state=outcome.state,
            status=outcome.status,
            processing_ms=int((time.time() - start_time) * 1000)
        )
        return outcome

    async def _assign_and_execute(
        self,
        ticket: Ticket,
        message: InboundMessage,
        history: List[HistoryTurn]
    ) -> PipelineOutcome:
        decision = await self.assignment.assign(ticket, message, history)
        state = decision.state.value

        if not decision.should_execute:
            status = "error" if decision.state == AssignmentState.FAILED else "skipped"
            await self.auditor.record(
                message,
                decision.ticket.id,
                state,
                agent_id=decision.ticket.assigned_agent.agent_id if decision.ticket.assigned_agent else None,
                reasons=decision.reasons,
                status=status,
                error="; ".join(decision.reasons) if status == "error" else None,
            )
            return PipelineOutcome(
                message_id=message.id,
                ticket_id=decision.ticket.id,
                state=state,
                status=status,
                reason=", ".join(decision.reasons) or None,
            )

        result = await self.gate.execute(
            decision.ticket, decision.agent, message, history, rule_id=decision.rule_id
        )
        if result.dispatched:
            await self._remember(f"{message.id}:reply", message, HistoryTurn(role="agent", content=result.output))

        await self.auditor.record(message, decision.ticket.id, state, result, reasons=decision.reasons)
        return PipelineOutcome(
            message_id=message.id,
            ticket_id=decision.ticket.id,
            state=state,
            status=result.status,
            reason=result.error,
        )

    async def _already_recorded(self, message: InboundMessage) -> bool:
        try:
            return await self.auditor.already_recorded(message.id)
        except StorageError as e:
            logger.warning("idempotency_check_failed", message_id=message.id, error=str(e))
            return False

    async def _remember(self, entry_id: str, message: InboundMessage, turn: HistoryTurn) -> None:
        if not turn.content.strip():
            return
        try:
            await self.history.append(entry_id, message.conversation_id, message.instance_id, turn)
        except StorageError as e:
            logger.warning("history_append_failed", message_id=message.id, error=str(e))

    async def _recent_history(self, ticket: Ticket, message: InboundMessage) -> List[HistoryTurn]:
        try:
            return await self.history.recent(
                message.conversation_id, message.instance_id, self.policy.history_limit
            )
        except StorageError as e:
            logger.warning("history_load_failed", ticket_id=ticket.id, error=str(e))
            return []
