import pytest

from app.core.config import PipelinePolicy
from app.core.logging import configure_logging
from app.services.agent_selector import IntelligentAgentSelector
from app.services.assignment import AssignmentOrchestrator
from app.services.auditor import ExecutionAuditor
from app.services.deduplication import EventDeduplicator
from app.services.execution_gate import ExecutionGate
from app.services.orchestrator import MessagePipeline
from app.services.rule_evaluator import RuleEvaluator
from app.services.ticket_resolver import TicketResolver
from tests.fakes import (
    FakeAgentStore,
    FakeExecutionLog,
    FakeGateway,
    FakeHistory,
    FakeLanguageModel,
    FakeTicketStore,
    make_agent,
    make_rule,
)

configure_logging(json_logs=False, level="WARNING")


@pytest.fixture
def policy():
    return PipelinePolicy(model_timeout=0.5, send_timeout=0.5)


@pytest.fixture
def ticket_store():
    return FakeTicketStore()


@pytest.fixture
def agent_store():
    """A sales agent with a keyword rule on shop-1."""
    return FakeAgentStore(
        agents=[make_agent("sales-bot", "Sales Bot")],
        rules=[make_rule("rule-sales", "sales-bot", priority=5, conditions={"keywords": ["preço"]})],
    )


@pytest.fixture
def execution_log():
    return FakeExecutionLog()


@pytest.fixture
def history():
    return FakeHistory()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def language_model():
    return FakeLanguageModel()


@pytest.fixture
def rule_evaluator(agent_store):
    return RuleEvaluator(agent_store, timezone="UTC")


@pytest.fixture
def assignment(ticket_store, agent_store, execution_log, rule_evaluator, policy):
    return AssignmentOrchestrator(
        ticket_store=ticket_store,
        agent_store=agent_store,
        execution_log=execution_log,
        rule_evaluator=rule_evaluator,
        selector=IntelligentAgentSelector(min_score=policy.selector_min_score),
        policy=policy,
    )


@pytest.fixture
def gate(language_model, gateway, policy):
    return ExecutionGate(language_model, gateway, policy)


@pytest.fixture
def pipeline(ticket_store, assignment, gate, execution_log, history, policy):
    return MessagePipeline(
        resolver=TicketResolver(ticket_store),
        assignment=assignment,
        gate=gate,
        auditor=ExecutionAuditor(execution_log),
        history=history,
        deduplicator=EventDeduplicator(ttl_seconds=60),
        policy=policy,
    )
