"""
Orquestador de asignación - Decide qué agente atiende un mensaje.

Máquina de estados por mensaje:

    STICKY         agente IA ya vinculado con auto-respuesta
    SCORED         selección inteligente por puntuación
    RULE_FALLBACK  regla de activación de mayor prioridad
    SKIPPED        ningún candidato (o ticket fuera de alcance)
    FAILED         error de almacenamiento o agente vinculado no disponible

Cada estrategia que falla degrada a la siguiente. Hay un único punto de
salida que retorna la decisión.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import structlog

from app.core.config import PipelinePolicy
from app.core.errors import NoEligibleAgent
from app.schemas.agent import AgentProfile, MatchedRule, MessageContext, SelectionCandidate
from app.schemas.message import HistoryTurn, InboundMessage
from app.schemas.ticket import STICKY_STATUSES, AgentBinding, AiConfig, EscalationConfig, Ticket
from app.services.agent_selector import IntelligentAgentSelector
from app.services.interfaces import AgentConfigStore, ExecutionLog, TicketStore
from app.services.rule_evaluator import RuleEvaluator

logger = structlog.get_logger()


class AssignmentState(str, Enum):
    STICKY = "sticky"
    SCORED = "scored"
    RULE_FALLBACK = "rule_fallback"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class AssignmentDecision:
    state: AssignmentState
    ticket: Ticket
    agent: Optional[AgentProfile] = None
    rule_id: Optional[str] = None
    candidate: Optional[SelectionCandidate] = None
    reasons: List[str] = field(default_factory=list)

    @property
    def should_execute(self) -> bool:
        return self.agent is not None and self.state in (
            AssignmentState.STICKY,
            AssignmentState.SCORED,
            AssignmentState.RULE_FALLBACK,
        )


class AssignmentOrchestrator:
    def __init__(
        self,
        ticket_store: TicketStore,
        agent_store: AgentConfigStore,
        execution_log: ExecutionLog,
        rule_evaluator: RuleEvaluator,
        selector: IntelligentAgentSelector,
        policy: PipelinePolicy,
    ):
        self._tickets = ticket_store
        self._agents = agent_store
        self._executions = execution_log
        self._rules = rule_evaluator
        self._selector = selector
        self._policy = policy

    async def assign(
        self,
        ticket: Ticket,
        message: InboundMessage,
        history: Optional[List[HistoryTurn]] = None
    ) -> AssignmentDecision:
        if ticket.has_sticky_ai_agent:
            # Camino dominante: sin reglas ni puntuación
            decision = await self._sticky(ticket)
        elif ticket.assigned_agent is not None:
            decision = AssignmentDecision(
                AssignmentState.SKIPPED, ticket,
                reasons=[f"bound_to_{ticket.assigned_agent.kind}_without_auto_response"]
            )
        elif ticket.status not in STICKY_STATUSES:
            decision = AssignmentDecision(
                AssignmentState.SKIPPED, ticket, reasons=[f"ticket_{ticket.status}"]
            )
        else:
            decision = await self._select_and_commit(ticket, message, history or [])

        logger.info(
            "assignment_decided",
            ticket_id=ticket.id,
            message_id=message.id,
            state=decision.state.value,
            agent_id=decision.agent.id if decision.agent else None,
            reasons=decision.reasons
        )
        return decision

    # ------------------------------------------------------------------
    # Estrategias

    async def _sticky(self, ticket: Ticket) -> AssignmentDecision:
        binding = ticket.assigned_agent
        try:
            agent = await self._agents.get_agent_profile(binding.agent_id)
            if agent is None or not agent.is_active:
                return AssignmentDecision(
                    AssignmentState.FAILED, ticket, reasons=["bound_agent_unavailable"]
                )

            escalation = ticket.ai_config.escalation
            if escalation.escalate_to_human:
                interactions = await self._executions.count_for_ticket(ticket.id, "success")
                if interactions >= escalation.max_interactions:
                    escalated = await self._tickets.escalate(ticket.id)
                    logger.info(
                        "ticket_escalated",
                        ticket_id=ticket.id,
                        interactions=interactions,
                        max_interactions=escalation.max_interactions
                    )
                    return AssignmentDecision(
                        AssignmentState.SKIPPED, escalated, reasons=["escalated_to_human"]
                    )
        except Exception as e:
            logger.error("sticky_assignment_error", ticket_id=ticket.id, error=str(e))
            return AssignmentDecision(AssignmentState.FAILED, ticket, reasons=[f"storage_error: {e}"])

        return AssignmentDecision(
            AssignmentState.STICKY, ticket, agent=agent, reasons=["sticky_binding"]
        )

    async def _select_and_commit(
        self,
        ticket: Ticket,
        message: InboundMessage,
        history: List[HistoryTurn]
    ) -> AssignmentDecision:
        errors: List[str] = []
        reasons: List[str] = []
        matches: Optional[List[MatchedRule]] = None

        if self._policy.auto_assignment_enabled:
            try:
                matches = await self._rules.evaluate(ticket, message)
                decision = await self._scored(ticket, message, history, matches, reasons)
                if decision is not None:
                    return decision
            except Exception as e:
                logger.warning("scored_assignment_failed", ticket_id=ticket.id, error=str(e))
                errors.append(f"scored: {e}")
        else:
            reasons.append("auto_assignment_disabled")

        if self._policy.rule_fallback_enabled:
            try:
                if matches is None:
                    matches = await self._rules.evaluate(ticket, message)
                decision = await self._rule_fallback(ticket, matches, reasons)
                if decision is not None:
                    return decision
            except Exception as e:
                logger.warning("rule_fallback_failed", ticket_id=ticket.id, error=str(e))
                errors.append(f"rule_fallback: {e}")
        else:
            reasons.append("rule_fallback_disabled")

        if errors:
            return AssignmentDecision(AssignmentState.FAILED, ticket, reasons=reasons + errors)
        return AssignmentDecision(
            AssignmentState.SKIPPED, ticket, reasons=reasons + [NoEligibleAgent.code]
        )

    async def _scored(
        self,
        ticket: Ticket,
        message: InboundMessage,
        history: List[HistoryTurn],
        matches: List[MatchedRule],
        reasons: List[str]
    ) -> Optional[AssignmentDecision]:
        agents = await self._agents.list_active_agents()
        limit = self._policy.history_limit
        context = MessageContext(
            text=message.text,
            kind=message.kind,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            instance_id=message.instance_id,
            occurred_at=message.occurred_at,
            history=history[-limit:] if limit else [],
            ticket_priority=ticket.priority,
            client_tags=ticket.client_tags,
        )
        candidate = self._selector.select_best_agent(context, agents, matches)
        if candidate is None:
            reasons.append("selector_no_candidate")
            return None

        # Seleccionado pero rechazado: distinto de "sin candidato"
        if candidate.score < self._policy.min_score:
            reasons.append(f"selector_score_below_minimum: {candidate.score}")
            return None
        if candidate.confidence < self._policy.min_confidence:
            reasons.append(f"selector_confidence_below_minimum: {candidate.confidence}")
            return None

        decision = await self._commit(ticket, candidate.agent, AssignmentState.SCORED)
        decision.candidate = candidate
        decision.reasons = reasons + candidate.reasons
        return decision

    async def _rule_fallback(
        self,
        ticket: Ticket,
        matches: List[MatchedRule],
        reasons: List[str]
    ) -> Optional[AssignmentDecision]:
        for match in matches:
            agent = await self._agents.get_agent_profile(match.agent_id)
            if agent is None or not agent.is_active:
                continue
            decision = await self._commit(ticket, agent, AssignmentState.RULE_FALLBACK)
            decision.rule_id = match.rule.id
            decision.reasons = reasons + [f"rule {match.rule.id} priority {match.priority}"]
            return decision

        reasons.append("no_matching_rule")
        return None

    async def _commit(
        self,
        ticket: Ticket,
        agent: AgentProfile,
        state: AssignmentState
    ) -> AssignmentDecision:
        """
        Vincula el agente al ticket con una sola actualización atómica.
        Si otro handler vinculó un agente distinto primero, gana ese agente.
        """
        binding = AgentBinding(agent_id=agent.id, kind="ai", display_name=agent.name)
        ai_config = AiConfig(
            activation_mode="immediate",
            auto_response=True,
            escalation=EscalationConfig(
                max_interactions=agent.max_interactions,
                escalate_to_human=agent.escalate_to_human,
            ),
        )
        updated = await self._tickets.bind_agent(ticket.id, binding, ai_config)

        winner = updated.assigned_agent
        if winner is not None and winner.agent_id != agent.id:
            logger.info(
                "binding_lost_race",
                ticket_id=ticket.id,
                proposed=agent.id,
                bound=winner.agent_id
            )
            if not updated.has_sticky_ai_agent:
                return AssignmentDecision(AssignmentState.SKIPPED, updated, reasons=["bound_concurrently"])
            agent = await self._agents.get_agent_profile(winner.agent_id)
            if agent is None or not agent.is_active:
                return AssignmentDecision(AssignmentState.FAILED, updated, reasons=["bound_agent_unavailable"])
            return AssignmentDecision(AssignmentState.STICKY, updated, agent=agent)

        logger.info("agent_bound", ticket_id=ticket.id, agent_id=agent.id, state=state.value)
        return AssignmentDecision(state, updated, agent=agent)
