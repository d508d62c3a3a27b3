"""
Construcción del pipeline con sus dependencias concretas.
"""

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import PipelinePolicy, Settings
from app.core.database import async_session_maker
from app.services.agent_selector import IntelligentAgentSelector
from app.services.ai_service import OpenAILanguageModelService
from app.services.assignment import AssignmentOrchestrator
from app.services.auditor import ExecutionAuditor
from app.services.database_service import (
    SqlAgentConfigStore,
    SqlConversationHistory,
    SqlExecutionLog,
    SqlTicketStore,
)
from app.services.deduplication import EventDeduplicator
from app.services.execution_gate import ExecutionGate
from app.services.gateway_service import EvolutionGatewayClient
from app.services.orchestrator import MessagePipeline
from app.services.rule_evaluator import RuleEvaluator
from app.services.ticket_resolver import TicketResolver


def build_pipeline(
    config: Settings,
    session_maker: async_sessionmaker = None,
    language_model=None,
    gateway=None,
) -> MessagePipeline:
    """
    Crea cada colaborador una sola vez. `language_model` y `gateway`
    se pueden reemplazar (tests, entornos sin credenciales).
    """
    session_maker = session_maker or async_session_maker
    policy = PipelinePolicy.from_settings(config)

    tickets = SqlTicketStore(session_maker)
    agents = SqlAgentConfigStore(session_maker)
    history = SqlConversationHistory(session_maker)
    executions = SqlExecutionLog(session_maker)

    language_model = language_model or OpenAILanguageModelService(
        api_key=config.openai_api_key, default_model=config.openai_model
    )
    gateway = gateway or EvolutionGatewayClient(
        base_url=config.evolution_api_url,
        api_key=config.evolution_api_key,
        timeout=config.send_timeout_seconds,
    )

    assignment = AssignmentOrchestrator(
        ticket_store=tickets,
        agent_store=agents,
        execution_log=executions,
        rule_evaluator=RuleEvaluator(agents, timezone=config.business_timezone),
        selector=IntelligentAgentSelector(min_score=policy.selector_min_score),
        policy=policy,
    )

    return MessagePipeline(
        resolver=TicketResolver(tickets),
        assignment=assignment,
        gate=ExecutionGate(language_model, gateway, policy),
        auditor=ExecutionAuditor(executions),
        history=history,
        deduplicator=EventDeduplicator(ttl_seconds=config.dedup_ttl_seconds),
        policy=policy,
    )
