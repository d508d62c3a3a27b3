"""
Auditor de ejecuciones - Registro append-only de cada decisión.

La auditoría es para observabilidad, no para corrección del negocio:
los fallos de escritura se registran en el log y se descartan.
"""

from typing import List, Optional

import structlog

from app.schemas.execution import AgentExecution, ExecutionResult
from app.schemas.message import InboundMessage
from app.services.interfaces import ExecutionLog

logger = structlog.get_logger()


class ExecutionAuditor:
    def __init__(self, log: ExecutionLog):
        self._log = log

    async def already_recorded(self, message_id: str) -> bool:
        """Chequeo de idempotencia por id de mensaje."""
        return await self._log.exists(message_id)

    async def record(
        self,
        message: InboundMessage,
        ticket_id: str,
        assignment_state: str,
        result: Optional[ExecutionResult] = None,
        *,
        agent_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        reasons: Optional[List[str]] = None,
        status: Optional[str] = None,
        error: Optional[str] = None
    ) -> Optional[AgentExecution]:
        """
        Registra el resultado de un mensaje. Sin `result` se registra
        una entrada `skipped` (o el `status` indicado) sin ejecución.
        """
        if result is not None:
            execution = AgentExecution(
                message_id=message.id,
                ticket_id=ticket_id,
                instance_id=message.instance_id,
                agent_id=result.agent_id,
                rule_id=result.rule_id,
                assignment_state=assignment_state,
                input=result.input,
                output=result.output,
                confidence=result.confidence,
                tokens_used=result.tokens_used,
                execution_time_ms=result.execution_time_ms,
                status=result.status,
                error=result.error,
                reasons=reasons or [],
            )
        else:
            execution = AgentExecution(
                message_id=message.id,
                ticket_id=ticket_id,
                instance_id=message.instance_id,
                agent_id=agent_id,
                rule_id=rule_id,
                assignment_state=assignment_state,
                input=message.text,
                status=status or "skipped",
                error=error,
                reasons=reasons or [],
            )

        try:
            await self._log.append(execution)
        except Exception as e:
            logger.error(
                "execution_audit_failed",
                message_id=message.id,
                ticket_id=ticket_id,
                error=str(e)
            )
            return None

        logger.info(
            "execution_recorded",
            message_id=message.id,
            ticket_id=ticket_id,
            state=assignment_state,
            status=execution.status
        )
        return execution
