"""
Tests for the assignment state machine.

Tests:
- Scored selection binds the best agent to the ticket
- A sticky AI binding short-circuits rules and scoring
- Human bindings and out-of-scope tickets are skipped
- Policy flags and minimum thresholds route to the rule fallback
- Escalation after max interactions
- Storage errors end in FAILED, never an exception
- A concurrent binding wins over the local selection
- The selector sees at most HISTORY_LIMIT turns
"""
from dataclasses import replace

import pytest

from app.schemas.execution import AgentExecution
from app.schemas.message import HistoryTurn
from app.schemas.ticket import AgentBinding, AiConfig, EscalationConfig
from app.services.agent_selector import IntelligentAgentSelector
from app.services.assignment import AssignmentOrchestrator, AssignmentState
from app.services.rule_evaluator import RuleEvaluator
from tests.fakes import FakeAgentStore, make_agent, make_message, make_ticket


def build(ticket_store, agent_store, execution_log, policy):
    return AssignmentOrchestrator(
        ticket_store=ticket_store,
        agent_store=agent_store,
        execution_log=execution_log,
        rule_evaluator=RuleEvaluator(agent_store),
        selector=IntelligentAgentSelector(min_score=policy.selector_min_score),
        policy=policy,
    )


def sticky_ticket(agent_id="sales-bot", **escalation):
    return make_ticket(
        assigned_agent=AgentBinding(agent_id=agent_id, kind="ai", display_name="Sales Bot"),
        ai_config=AiConfig(auto_response=True, escalation=EscalationConfig(**escalation)),
    )


@pytest.mark.asyncio
async def test_scored_selection_binds_agent(assignment, ticket_store):
    ticket = ticket_store.add(make_ticket())

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.SCORED
    assert decision.should_execute
    assert decision.agent.id == "sales-bot"
    assert decision.candidate.score == pytest.approx(0.525)
    assert decision.candidate.confidence == pytest.approx(0.675)

    stored = ticket_store.tickets[ticket.id]
    assert stored.assigned_agent.agent_id == "sales-bot"
    assert stored.ai_config.auto_response is True
    assert stored.has_sticky_ai_agent
    assert decision.ticket == stored


@pytest.mark.asyncio
async def test_sticky_binding_skips_rules_and_scoring(assignment, ticket_store, agent_store):
    ticket = ticket_store.add(sticky_ticket())

    decision = await assignment.assign(ticket, make_message("bom dia, tudo bem?"))

    assert decision.state == AssignmentState.STICKY
    assert decision.agent.id == "sales-bot"
    assert agent_store.rule_calls == 0
    assert agent_store.list_agent_calls == 0
    assert ticket_store.bind_calls == []


@pytest.mark.asyncio
async def test_sticky_binding_is_reused_across_messages(assignment, ticket_store, agent_store):
    ticket = ticket_store.add(make_ticket())

    first = await assignment.assign(ticket, make_message(message_id="M1"))
    rule_calls = agent_store.rule_calls
    second = await assignment.assign(first.ticket, make_message("e o frete?", message_id="M2"))

    assert first.state == AssignmentState.SCORED
    assert second.state == AssignmentState.STICKY
    assert second.agent.id == first.agent.id
    assert agent_store.rule_calls == rule_calls


@pytest.mark.asyncio
async def test_human_binding_is_never_overridden(assignment, ticket_store):
    ticket = ticket_store.add(make_ticket(
        assigned_agent=AgentBinding(agent_id="operator-7", kind="human"),
    ))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert decision.reasons == ["bound_to_human_without_auto_response"]
    assert ticket_store.bind_calls == []
    assert ticket_store.tickets[ticket.id].assigned_agent.agent_id == "operator-7"


@pytest.mark.asyncio
async def test_ai_binding_without_auto_response_is_skipped(assignment, ticket_store):
    ticket = ticket_store.add(make_ticket(
        assigned_agent=AgentBinding(agent_id="sales-bot", kind="ai"),
        ai_config=AiConfig(auto_response=False),
    ))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert not decision.should_execute


@pytest.mark.asyncio
async def test_in_progress_ticket_is_skipped(assignment, ticket_store):
    ticket = ticket_store.add(make_ticket(status="in_progress"))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert decision.reasons == ["ticket_in_progress"]


@pytest.mark.asyncio
async def test_no_match_is_skipped_without_binding(ticket_store, execution_log, policy):
    agents = FakeAgentStore(agents=[make_agent("finance-bot", "Finance", category="financeiro")])
    orchestrator = build(ticket_store, agents, execution_log, policy)
    ticket = ticket_store.add(make_ticket())

    decision = await orchestrator.assign(ticket, make_message("bom dia"))

    assert decision.state == AssignmentState.SKIPPED
    assert decision.agent is None
    assert "selector_no_candidate" in decision.reasons
    assert "no_matching_rule" in decision.reasons
    assert decision.reasons[-1] == "no_eligible_agent"
    assert ticket_store.tickets[ticket.id].assigned_agent is None


@pytest.mark.asyncio
async def test_rule_fallback_when_auto_assignment_disabled(ticket_store, agent_store, execution_log, policy):
    orchestrator = build(ticket_store, agent_store, execution_log, replace(policy, auto_assignment_enabled=False))
    ticket = ticket_store.add(make_ticket())

    decision = await orchestrator.assign(ticket, make_message())

    assert decision.state == AssignmentState.RULE_FALLBACK
    assert decision.rule_id == "rule-sales"
    assert decision.agent.id == "sales-bot"
    assert "auto_assignment_disabled" in decision.reasons
    assert agent_store.list_agent_calls == 1  # only the evaluator's lookup


@pytest.mark.asyncio
async def test_both_strategies_disabled(ticket_store, agent_store, execution_log, policy):
    disabled = replace(policy, auto_assignment_enabled=False, rule_fallback_enabled=False)
    orchestrator = build(ticket_store, agent_store, execution_log, disabled)
    ticket = ticket_store.add(make_ticket())

    decision = await orchestrator.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert decision.reasons == ["auto_assignment_disabled", "rule_fallback_disabled", "no_eligible_agent"]
    assert agent_store.rule_calls == 0


@pytest.mark.asyncio
async def test_candidate_below_minimum_falls_back_to_rule(ticket_store, agent_store, execution_log, policy):
    orchestrator = build(ticket_store, agent_store, execution_log, replace(policy, min_score=0.6))
    ticket = ticket_store.add(make_ticket())

    decision = await orchestrator.assign(ticket, make_message())

    assert decision.state == AssignmentState.RULE_FALLBACK
    assert "selector_score_below_minimum: 0.525" in decision.reasons
    # The evaluator ran once and its matches were reused
    assert agent_store.rule_calls == 1


@pytest.mark.asyncio
async def test_rule_fallback_disabled_rejected_candidate_is_skipped(ticket_store, agent_store, execution_log, policy):
    strict = replace(policy, min_confidence=0.9, rule_fallback_enabled=False)
    orchestrator = build(ticket_store, agent_store, execution_log, strict)
    ticket = ticket_store.add(make_ticket())

    decision = await orchestrator.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert "selector_confidence_below_minimum: 0.675" in decision.reasons


@pytest.mark.asyncio
async def test_escalates_after_max_interactions(assignment, ticket_store, execution_log):
    ticket = ticket_store.add(sticky_ticket(max_interactions=2, escalate_to_human=True))
    for n in range(2):
        execution_log.entries.append(AgentExecution(
            message_id=f"old-{n}", ticket_id=ticket.id, assignment_state="sticky", status="success"
        ))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.SKIPPED
    assert decision.reasons == ["escalated_to_human"]
    stored = ticket_store.tickets[ticket.id]
    assert stored.status == "pending"
    assert stored.ai_config.auto_response is False
    assert not stored.has_sticky_ai_agent


@pytest.mark.asyncio
async def test_low_confidence_runs_do_not_count_towards_escalation(assignment, ticket_store, execution_log):
    ticket = ticket_store.add(sticky_ticket(max_interactions=1))
    execution_log.entries.append(AgentExecution(
        message_id="old", ticket_id=ticket.id, assignment_state="sticky", status="low_confidence"
    ))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.STICKY


@pytest.mark.asyncio
async def test_sticky_agent_unavailable_fails(assignment, ticket_store):
    ticket = ticket_store.add(sticky_ticket(agent_id="deleted-bot"))

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.FAILED
    assert decision.reasons == ["bound_agent_unavailable"]


@pytest.mark.asyncio
async def test_storage_errors_end_in_failed(assignment, ticket_store, agent_store):
    agent_store.fail_rules = True
    ticket = ticket_store.add(make_ticket())

    decision = await assignment.assign(ticket, make_message())

    assert decision.state == AssignmentState.FAILED
    assert any(reason.startswith("scored:") for reason in decision.reasons)
    assert any(reason.startswith("rule_fallback:") for reason in decision.reasons)


@pytest.mark.asyncio
async def test_concurrent_binding_wins(assignment, ticket_store, agent_store):
    agent_store.agents["support-bot"] = make_agent("support-bot", "Support Bot", category="suporte")
    stale = make_ticket()
    ticket_store.add(stale.model_copy(update={
        "assigned_agent": AgentBinding(agent_id="support-bot", kind="ai"),
        "ai_config": AiConfig(),
    }))

    decision = await assignment.assign(stale, make_message())

    assert decision.state == AssignmentState.STICKY
    assert decision.agent.id == "support-bot"
    assert ticket_store.tickets[stale.id].assigned_agent.agent_id == "support-bot"


class RecordingSelector(IntelligentAgentSelector):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.contexts = []

    def select_best_agent(self, context, agents, matched_rules=()):
        self.contexts.append(context)
        return super().select_best_agent(context, agents, matched_rules)


@pytest.mark.asyncio
@pytest.mark.parametrize("limit, expected", [
    (0, []),
    (2, ["turn 3", "turn 4"]),
    (10, ["turn 0", "turn 1", "turn 2", "turn 3", "turn 4"]),
])
async def test_selector_sees_at_most_history_limit_turns(ticket_store, agent_store, execution_log, policy, limit, expected):
    selector = RecordingSelector(min_score=policy.selector_min_score)
    orchestrator = AssignmentOrchestrator(
        ticket_store=ticket_store,
        agent_store=agent_store,
        execution_log=execution_log,
        rule_evaluator=RuleEvaluator(agent_store),
        selector=selector,
        policy=replace(policy, history_limit=limit),
    )
    ticket = ticket_store.add(make_ticket())
    history = [HistoryTurn(role="client", content=f"turn {n}") for n in range(5)]

    await orchestrator.assign(ticket, make_message(), history)

    [context] = selector.contexts
    assert [turn.content for turn in context.history] == expected
