"""
Compuerta de ejecución - Invoca al agente y decide si se envía la respuesta.

El envío al cliente ocurre solo si la confianza es estrictamente mayor
que el umbral configurado (0.7 por defecto). Modelo y envío tienen
tiempo límite propio y ningún bloqueo de ticket se mantiene mientras corren.
"""

import asyncio
import time
from typing import List, Optional

import structlog

from app.core.config import PipelinePolicy
from app.core.errors import DispatchFailure, LowConfidence, ModelError, ModelTimeout
from app.schemas.agent import AgentProfile
from app.schemas.execution import DeliveryReceipt, ExecutionResult, GenerationResult
from app.schemas.message import HistoryTurn, InboundMessage
from app.schemas.ticket import Ticket
from app.services.interfaces import LanguageModelService, MessagingGatewayClient

logger = structlog.get_logger()


DEFAULT_PERSONA = """Você é {name}, um assistente de atendimento ao cliente profissional e prestativo.
Responda de forma clara, objetiva e amigável às perguntas dos clientes."""

PROMPT_HISTORY_TURNS = 5


def build_prompt(
    agent: AgentProfile,
    ticket: Ticket,
    message: InboundMessage,
    history: List[HistoryTurn]
) -> str:
    """
    Prompt = plantilla del agente + historial reciente + datos del cliente + mensaje actual.
    """
    prompt = agent.prompt_template.strip() or DEFAULT_PERSONA.format(name=agent.name)

    # El mensaje actual ya puede estar en el historial
    turns = [turn for turn in history if not (turn.role == "client" and turn.content == message.text)]
    if turns:
        lines = "\n".join(turn.as_line() for turn in turns[-PROMPT_HISTORY_TURNS:])
        prompt += f"\n\nHistórico da conversa:\n{lines}"

    client_name = message.sender_name or ticket.client_name or "Cliente"
    prompt += (
        f"\n\nInformações do cliente:\n- Nome: {client_name}"
        f"\n- Telefone: {message.sender_id}\n- Ticket ID: {ticket.id}"
    )
    prompt += f"\n\nMensagem atual do cliente: \"{message.text}\"\n\nResponda de forma profissional e útil:"
    return prompt


class ExecutionGate:
    def __init__(
        self,
        language_model: LanguageModelService,
        gateway: MessagingGatewayClient,
        policy: PipelinePolicy,
    ):
        self._model = language_model
        self._gateway = gateway
        self._policy = policy

    async def execute(
        self,
        ticket: Ticket,
        agent: AgentProfile,
        message: InboundMessage,
        history: Optional[List[HistoryTurn]] = None,
        *,
        rule_id: Optional[str] = None
    ) -> ExecutionResult:
        start = time.monotonic()
        prompt = build_prompt(agent, ticket, message, history or [])

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            generation = await self._generate(prompt, agent)
        except ModelError as e:
            logger.error("agent_generation_failed", ticket_id=ticket.id, agent_id=agent.id, error=str(e))
            return ExecutionResult(
                status="error",
                agent_id=agent.id,
                rule_id=rule_id,
                input=message.text,
                execution_time_ms=elapsed_ms(),
                error=e.describe(),
            )

        result = ExecutionResult(
            status="success",
            agent_id=agent.id,
            rule_id=rule_id,
            input=message.text,
            output=generation.text,
            confidence=generation.confidence,
            tokens_used=generation.tokens_used,
        )

        if not generation.text.strip() or generation.confidence <= self._policy.dispatch_threshold:
            logger.info(
                "agent_response_withheld",
                ticket_id=ticket.id,
                agent_id=agent.id,
                confidence=generation.confidence,
                threshold=self._policy.dispatch_threshold
            )
            result.status = LowConfidence.code
            result.execution_time_ms = elapsed_ms()
            return result

        try:
            result.receipt = await self._dispatch(message, generation.text)
            result.dispatched = True
            logger.info(
                "agent_response_sent",
                ticket_id=ticket.id,
                agent_id=agent.id,
                confidence=generation.confidence
            )
        except DispatchFailure as e:
            # No se reenvía automáticamente: evita respuestas duplicadas o fuera de orden
            logger.error("agent_response_dispatch_failed", ticket_id=ticket.id, error=str(e))
            result.status = "error"
            result.error = e.describe()

        result.execution_time_ms = elapsed_ms()
        return result

    async def _generate(self, prompt: str, agent: AgentProfile) -> GenerationResult:
        timeout = self._policy.model_timeout
        try:
            return await asyncio.wait_for(
                self._model.generate(prompt, agent.model_params, timeout),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ModelTimeout(f"no response after {timeout}s") from e
        except ModelError:
            raise
        except Exception as e:
            raise ModelError(str(e)) from e

    async def _dispatch(self, message: InboundMessage, text: str) -> DeliveryReceipt:
        timeout = self._policy.send_timeout
        try:
            return await asyncio.wait_for(
                self._gateway.send(message.instance_id, message.conversation_id, text),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise DispatchFailure(f"send timed out after {timeout}s") from e
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(str(e)) from e
