"""
Evaluador de reglas de activación.

Una regla aplica solo si TODOS los grupos de condiciones con valores
coinciden (conjuntivo entre grupos, disyuntivo dentro de cada grupo).
Los grupos vacíos son comodines; una regla sin condiciones aplica siempre.
"""

from datetime import datetime, time
from typing import Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

import structlog

from app.schemas.agent import ActivationRule, MatchedRule, TimeWindow
from app.schemas.message import InboundMessage
from app.schemas.ticket import Ticket
from app.services.interfaces import AgentConfigStore
from app.services.text_utils import contains_term, fold

logger = structlog.get_logger()


class RuleEvaluator:
    def __init__(self, agent_store: AgentConfigStore, timezone: str = "UTC"):
        self._agent_store = agent_store
        self._tz = ZoneInfo(timezone)

    async def evaluate(self, ticket: Ticket, message: InboundMessage) -> List[MatchedRule]:
        """
        Reglas que coinciden con el ticket y el mensaje, ordenadas por
        prioridad descendente (empates: la regla más antigua primero).
        Lista vacía si ninguna coincide.
        """
        rules = await self._agent_store.list_activation_rules(ticket.instance_id)
        agents = await self._agent_store.list_active_agents()
        matches = self.match(ticket, message, rules, {agent.id for agent in agents})

        logger.info(
            "rules_evaluated",
            ticket_id=ticket.id,
            total_rules=len(rules),
            matching_rules=len(matches),
            top_agent=matches[0].agent_id if matches else None
        )
        return matches

    def match(
        self,
        ticket: Ticket,
        message: InboundMessage,
        rules: Iterable[ActivationRule],
        active_agent_ids: Set[str]
    ) -> List[MatchedRule]:
        """Versión pura de evaluate() sobre reglas ya cargadas."""
        local_time = message.occurred_at.astimezone(self._tz)
        folded_text = fold(message.text)

        indexed = []
        for position, rule in enumerate(rules):
            # Reglas inactivas o de agentes inactivos se excluyen antes de evaluar
            if not rule.active or rule.agent_id not in active_agent_ids:
                continue
            matched = self._match_conditions(rule, ticket, message, folded_text, local_time)
            if matched is not None:
                indexed.append((position, MatchedRule(rule=rule, matched_conditions=matched)))

        indexed.sort(key=lambda item: (-item[1].rule.priority, item[1].rule.created_at, item[0]))
        return [match for _, match in indexed]

    def _match_conditions(
        self,
        rule: ActivationRule,
        ticket: Ticket,
        message: InboundMessage,
        folded_text: str,
        local_time: datetime
    ) -> Optional[List[str]]:
        """Grupos que coincidieron, o None si algún grupo con valores no coincide."""
        conditions = rule.conditions
        matched: List[str] = []

        if conditions.is_empty:
            return ["any"]

        if conditions.message_kinds:
            if message.kind not in conditions.message_kinds:
                return None
            matched.append("message_kinds")

        if conditions.keywords:
            if not any(contains_term(folded_text, keyword) for keyword in conditions.keywords):
                return None
            matched.append("keywords")

        if conditions.time_window:
            if not in_time_window(local_time.time(), conditions.time_window):
                return None
            matched.append("time_window")

        if conditions.weekdays:
            # 0 = domingo
            if (local_time.weekday() + 1) % 7 not in conditions.weekdays:
                return None
            matched.append("weekdays")

        if conditions.ticket_priority:
            if ticket.priority not in conditions.ticket_priority:
                return None
            matched.append("ticket_priority")

        if conditions.client_tags:
            if not set(conditions.client_tags) & set(ticket.client_tags):
                return None
            matched.append("client_tags")

        if conditions.instance_ids:
            if message.instance_id not in conditions.instance_ids:
                return None
            matched.append("instance_ids")

        return matched


def in_time_window(current: time, window: TimeWindow) -> bool:
    """Inclusivo en ambos extremos; soporta ventanas que cruzan medianoche."""
    now = current.strftime("%H:%M")
    if window.start <= window.end:
        return window.start <= now <= window.end
    return now >= window.start or now <= window.end
