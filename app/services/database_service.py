"""
Servicio de Base de Datos - Tickets, agentes, historial y auditoría sobre SQLAlchemy.

Implementa los protocolos de app.services.interfaces. Cada operación
abre su propia sesión; las creaciones son inserts con ON CONFLICT DO
NOTHING y la vinculación de agentes es un UPDATE condicional.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.core.errors import StorageError
from app.models import (
    ActivationRuleRecord,
    AgentExecutionRecord,
    AgentRecord,
    ConversationMessageRecord,
    TicketRecord,
)
from app.schemas.agent import ActivationRule, AgentProfile, ModelParams, RuleConditions
from app.schemas.execution import AgentExecution
from app.schemas.message import HistoryTurn, utcnow
from app.schemas.ticket import ACTIVE_STATUSES, AgentBinding, AiConfig, Ticket

logger = structlog.get_logger()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite devuelve datetimes sin zona; se asume UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _insert_for(session: AsyncSession, table):
    """INSERT del dialecto activo, con soporte de ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise StorageError(f"Dialecto no soportado: {dialect}")


class _SqlStore:
    def __init__(self, session_maker: async_sessionmaker = None):
        self._session_maker = session_maker or async_session_maker

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self._session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("storage_error", operation=operation, error=str(e))
            raise StorageError(f"{operation}: {e}") from e


# ======================================================================
# Tickets

def ticket_from_record(record: TicketRecord) -> Ticket:
    binding = None
    if record.assigned_agent_id:
        binding = AgentBinding(
            agent_id=record.assigned_agent_id,
            kind=record.assigned_agent_kind or "ai",
            display_name=record.assigned_agent_name or "",
        )
    return Ticket(
        id=record.id,
        conversation_id=record.conversation_id,
        instance_id=record.instance_id,
        sequence=record.sequence,
        status=record.status,
        priority=record.priority,
        client_tags=record.client_tags or [],
        client_name=record.client_name,
        assigned_agent=binding,
        ai_config=AiConfig.model_validate(record.ai_config) if record.ai_config else None,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


class SqlTicketStore(_SqlStore):
    async def get_open_ticket_by_conversation(self, conversation_id: str, instance_id: str) -> Optional[Ticket]:
        async with self._session("get_open_ticket") as session:
            result = await session.execute(
                select(TicketRecord)
                .where(
                    TicketRecord.conversation_id == conversation_id,
                    TicketRecord.instance_id == instance_id,
                    TicketRecord.status.in_(ACTIVE_STATUSES),
                )
                .order_by(TicketRecord.sequence.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return ticket_from_record(record) if record else None

    async def get_latest_ticket(self, conversation_id: str, instance_id: str) -> Optional[Ticket]:
        async with self._session("get_latest_ticket") as session:
            result = await session.execute(
                select(TicketRecord)
                .where(
                    TicketRecord.conversation_id == conversation_id,
                    TicketRecord.instance_id == instance_id,
                )
                .order_by(TicketRecord.sequence.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return ticket_from_record(record) if record else None

    async def upsert_ticket(self, ticket: Ticket) -> Ticket:
        async with self._session("upsert_ticket") as session:
            stmt = _insert_for(session, TicketRecord).values(
                id=ticket.id,
                conversation_id=ticket.conversation_id,
                instance_id=ticket.instance_id,
                sequence=ticket.sequence,
                status=ticket.status,
                priority=ticket.priority,
                client_tags=list(ticket.client_tags),
                client_name=ticket.client_name,
                created_at=ticket.created_at,
                updated_at=ticket.updated_at,
            ).on_conflict_do_nothing()
            result = await session.execute(stmt)
            await session.commit()

            record = await session.get(TicketRecord, ticket.id)
            if record is None:
                raise StorageError(f"ticket {ticket.id} no encontrado tras el upsert")

            if result.rowcount:
                logger.info("ticket_created", ticket_id=ticket.id, conversation_id=ticket.conversation_id)
            return ticket_from_record(record)

    async def bind_agent(self, ticket_id: str, binding: AgentBinding, ai_config: AiConfig) -> Ticket:
        async with self._session("bind_agent") as session:
            await session.execute(
                update(TicketRecord)
                .where(
                    TicketRecord.id == ticket_id,
                    or_(
                        TicketRecord.assigned_agent_id.is_(None),
                        TicketRecord.assigned_agent_id == binding.agent_id,
                    ),
                )
                .values(
                    assigned_agent_id=binding.agent_id,
                    assigned_agent_kind=binding.kind,
                    assigned_agent_name=binding.display_name,
                    ai_config=ai_config.model_dump(),
                    updated_at=utcnow(),
                )
            )
            await session.commit()

            record = await session.get(TicketRecord, ticket_id)
            if record is None:
                raise StorageError(f"ticket {ticket_id} no existe")
            return ticket_from_record(record)

    async def escalate(self, ticket_id: str) -> Ticket:
        """Desactiva la auto-respuesta y deja el ticket pendiente para un humano."""
        async with self._session("escalate_ticket") as session:
            record = await session.get(TicketRecord, ticket_id)
            if record is None:
                raise StorageError(f"ticket {ticket_id} no existe")

            config = AiConfig.model_validate(record.ai_config) if record.ai_config else AiConfig()
            config.auto_response = False
            record.ai_config = config.model_dump()
            record.status = "pending"
            await session.commit()
            return ticket_from_record(record)


# ======================================================================
# Agentes y reglas

def agent_from_record(record: AgentRecord) -> AgentProfile:
    return AgentProfile(
        id=record.id,
        name=record.name,
        status=record.status,
        description=record.description or "",
        category=record.category,
        keywords=record.keywords or [],
        capabilities=record.capabilities or [],
        prompt_template=record.prompt_template or "",
        model_params=ModelParams.model_validate(record.model_params or {}),
        availability=record.availability if record.availability is not None else 1.0,
        priority=record.priority or 5,
        max_interactions=record.max_interactions or 10,
        escalate_to_human=bool(record.escalate_to_human),
        tags=record.tags or [],
        created_at=_aware(record.created_at),
    )


def rule_from_record(record: ActivationRuleRecord) -> ActivationRule:
    return ActivationRule(
        id=record.id,
        agent_id=record.agent_id,
        name=record.name or "",
        description=record.description or "",
        priority=record.priority,
        active=record.active,
        conditions=RuleConditions.model_validate(record.conditions or {}),
        created_at=_aware(record.created_at),
    )


# Reglas estándar de un agente nuevo
DEFAULT_RULES = [
    {
        "name": "Horário Comercial",
        "description": "Ativar agente durante horário comercial",
        "priority": 5,
        "conditions": {"time_window": {"start": "09:00", "end": "18:00"}, "weekdays": [1, 2, 3, 4, 5]},
    },
    {
        "name": "Palavras-chave de Vendas",
        "description": "Ativar para mensagens relacionadas a vendas",
        "priority": 7,
        "conditions": {
            "keywords": ["preço", "comprar", "produto", "vendas", "orçamento", "valor"],
            "message_kinds": ["text"],
        },
    },
    {
        "name": "Alta Prioridade",
        "description": "Ativar para tickets de alta prioridade",
        "priority": 9,
        "conditions": {"ticket_priority": ["high", "urgent"]},
    },
]

DEMO_AGENT = {
    "name": "Sales Bot",
    "description": "Agente de vendas para dúvidas sobre preços, planos e produtos",
    "category": "vendas",
    "keywords": ["preço", "plano", "comprar", "produto", "orçamento", "valor", "premium"],
    "capabilities": ["vendas", "orçamentos"],
    "prompt_template": (
        "Você é o Sales Bot, um consultor de vendas simpático e objetivo. "
        "Ajude o cliente a escolher o melhor plano e responda dúvidas sobre preços."
    ),
    "priority": 7,
}


class SqlAgentConfigStore(_SqlStore):
    async def get_agent_profile(self, agent_id: str) -> Optional[AgentProfile]:
        async with self._session("get_agent_profile") as session:
            record = await session.get(AgentRecord, agent_id)
            return agent_from_record(record) if record else None

    async def list_active_agents(self) -> List[AgentProfile]:
        async with self._session("list_active_agents") as session:
            result = await session.execute(
                select(AgentRecord).where(AgentRecord.status == "active").order_by(AgentRecord.created_at)
            )
            return [agent_from_record(record) for record in result.scalars().all()]

    async def list_activation_rules(self, instance_id: Optional[str] = None) -> List[ActivationRule]:
        async with self._session("list_activation_rules") as session:
            result = await session.execute(
                select(ActivationRuleRecord)
                .where(ActivationRuleRecord.active.is_(True))
                .order_by(ActivationRuleRecord.priority.desc(), ActivationRuleRecord.created_at)
            )
            rules = [rule_from_record(record) for record in result.scalars().all()]

        if instance_id is None:
            return rules
        # Las condiciones son JSON: el filtro por instancia se hace en memoria
        return [
            rule for rule in rules
            if not rule.conditions.instance_ids or instance_id in rule.conditions.instance_ids
        ]

    async def create_agent(self, profile: AgentProfile) -> AgentProfile:
        async with self._session("create_agent") as session:
            record = AgentRecord(
                id=profile.id,
                name=profile.name,
                status=profile.status,
                description=profile.description,
                category=profile.category,
                keywords=list(profile.keywords),
                capabilities=list(profile.capabilities),
                availability=profile.availability,
                priority=profile.priority,
                tags=list(profile.tags),
                prompt_template=profile.prompt_template,
                model_params=profile.model_params.model_dump(),
                max_interactions=profile.max_interactions,
                escalate_to_human=profile.escalate_to_human,
                created_at=profile.created_at,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)

            logger.info("agent_created", agent_id=record.id, name=record.name)
            return agent_from_record(record)

    async def create_rule(self, rule: ActivationRule) -> ActivationRule:
        async with self._session("create_rule") as session:
            record = ActivationRuleRecord(
                id=rule.id,
                agent_id=rule.agent_id,
                name=rule.name,
                description=rule.description,
                priority=rule.priority,
                active=rule.active,
                conditions=rule.conditions.model_dump(exclude_none=True),
                created_at=rule.created_at,
            )
            session.add(record)
            await session.commit()
            return rule_from_record(record)

    async def create_default_rules(self, agent_id: str) -> List[ActivationRule]:
        rules = []
        for template in DEFAULT_RULES:
            rule = ActivationRule(id=str(uuid.uuid4()), agent_id=agent_id, **template)
            rules.append(await self.create_rule(rule))

        logger.info("default_rules_created", agent_id=agent_id, count=len(rules))
        return rules


# ======================================================================
# Historial de conversación

class SqlConversationHistory(_SqlStore):
    async def append(self, message_id: str, conversation_id: str, instance_id: str, turn: HistoryTurn) -> None:
        async with self._session("append_history") as session:
            stmt = _insert_for(session, ConversationMessageRecord).values(
                id=message_id,
                conversation_id=conversation_id,
                instance_id=instance_id,
                role=turn.role,
                content=turn.content,
                created_at=turn.occurred_at,
            ).on_conflict_do_nothing()
            await session.execute(stmt)
            await session.commit()

    async def recent(self, conversation_id: str, instance_id: str, limit: int) -> List[HistoryTurn]:
        async with self._session("recent_history") as session:
            result = await session.execute(
                select(ConversationMessageRecord)
                .where(
                    ConversationMessageRecord.conversation_id == conversation_id,
                    ConversationMessageRecord.instance_id == instance_id,
                )
                .order_by(ConversationMessageRecord.created_at.desc())
                .limit(limit)
            )
            records = list(result.scalars().all())

        records.reverse()
        return [
            HistoryTurn(role=record.role, content=record.content, occurred_at=_aware(record.created_at))
            for record in records
        ]


# ======================================================================
# Auditoría

class SqlExecutionLog(_SqlStore):
    async def append(self, execution: AgentExecution) -> None:
        async with self._session("append_execution") as session:
            stmt = _insert_for(session, AgentExecutionRecord).values(
                **execution.model_dump()
            ).on_conflict_do_nothing(index_elements=["message_id"])
            result = await session.execute(stmt)
            await session.commit()

        if not result.rowcount:
            logger.info("execution_already_recorded", message_id=execution.message_id)

    async def exists(self, message_id: str) -> bool:
        async with self._session("execution_exists") as session:
            result = await session.execute(
                select(AgentExecutionRecord.id).where(AgentExecutionRecord.message_id == message_id).limit(1)
            )
            return result.first() is not None

    async def count_for_ticket(self, ticket_id: str, status: Optional[str] = None) -> int:
        async with self._session("count_executions") as session:
            query = select(func.count()).select_from(AgentExecutionRecord).where(
                AgentExecutionRecord.ticket_id == ticket_id
            )
            if status is not None:
                query = query.where(AgentExecutionRecord.status == status)
            result = await session.execute(query)
            return int(result.scalar_one())
