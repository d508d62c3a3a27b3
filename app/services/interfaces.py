"""
Interfaces de los colaboradores externos del pipeline.

El núcleo depende solo de estos protocolos; las implementaciones
concretas (SQLAlchemy, Evolution API, OpenAI) se inyectan al arrancar.
"""

from typing import List, Optional, Protocol

from app.schemas.agent import ActivationRule, AgentProfile, ModelParams
from app.schemas.execution import AgentExecution, DeliveryReceipt, GenerationResult
from app.schemas.message import HistoryTurn
from app.schemas.ticket import AgentBinding, AiConfig, Ticket


class TicketStore(Protocol):
    async def get_open_ticket_by_conversation(
        self, conversation_id: str, instance_id: str
    ) -> Optional[Ticket]: ...

    async def get_latest_ticket(self, conversation_id: str, instance_id: str) -> Optional[Ticket]: ...

    async def upsert_ticket(self, ticket: Ticket) -> Ticket:
        """Crea el ticket si no existe y retorna la fila almacenada."""
        ...

    async def bind_agent(self, ticket_id: str, binding: AgentBinding, ai_config: AiConfig) -> Ticket:
        """Vincula el agente si el ticket está libre o ya tiene el mismo agente."""
        ...

    async def escalate(self, ticket_id: str) -> Ticket: ...


class AgentConfigStore(Protocol):
    async def get_agent_profile(self, agent_id: str) -> Optional[AgentProfile]: ...

    async def list_active_agents(self) -> List[AgentProfile]: ...

    async def list_activation_rules(self, instance_id: Optional[str] = None) -> List[ActivationRule]: ...


class ConversationHistory(Protocol):
    async def append(
        self, message_id: str, conversation_id: str, instance_id: str, turn: HistoryTurn
    ) -> None: ...

    async def recent(self, conversation_id: str, instance_id: str, limit: int) -> List[HistoryTurn]:
        """Últimos `limit` turnos, en orden cronológico."""
        ...


class MessagingGatewayClient(Protocol):
    async def send(self, instance_id: str, conversation_id: str, text: str) -> DeliveryReceipt:
        """Envía un texto. Lanza DispatchFailure si el gateway rechaza el envío."""
        ...


class LanguageModelService(Protocol):
    async def generate(self, prompt: str, params: ModelParams, timeout: float) -> GenerationResult: ...


class ExecutionLog(Protocol):
    async def append(self, execution: AgentExecution) -> None: ...

    async def exists(self, message_id: str) -> bool: ...

    async def count_for_ticket(self, ticket_id: str, status: Optional[str] = None) -> int: ...
