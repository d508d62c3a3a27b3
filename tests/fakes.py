"""
In-memory collaborators for pipeline tests.

Each fake implements one protocol from app.services.interfaces and
records its calls so tests can assert what was (or wasn't) touched.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.core.errors import DispatchFailure, ModelError, StorageError
from app.schemas.agent import ActivationRule, AgentProfile, ModelParams, RuleConditions
from app.schemas.execution import AgentExecution, DeliveryReceipt, GenerationResult
from app.schemas.message import HistoryTurn, InboundMessage
from app.schemas.ticket import ACTIVE_STATUSES, AgentBinding, AiConfig, Ticket
from app.services.ticket_resolver import ticket_id_for

# Wednesday 2024-01-17 14:30 UTC
FIXED_TS = 1705501800


class FakeTicketStore:
    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.fail = False
        self.upserts = 0
        self.bind_calls: List[str] = []

    def _check(self):
        if self.fail:
            raise StorageError("database unavailable")

    def add(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = ticket
        return ticket

    async def get_open_ticket_by_conversation(self, conversation_id, instance_id):
        self._check()
        await asyncio.sleep(0)
        candidates = [
            t for t in self.tickets.values()
            if t.conversation_id == conversation_id and t.instance_id == instance_id and t.status in ACTIVE_STATUSES
        ]
        return max(candidates, key=lambda t: t.sequence) if candidates else None

    async def get_latest_ticket(self, conversation_id, instance_id):
        self._check()
        candidates = [
            t for t in self.tickets.values()
            if t.conversation_id == conversation_id and t.instance_id == instance_id
        ]
        return max(candidates, key=lambda t: t.sequence) if candidates else None

    async def upsert_ticket(self, ticket: Ticket) -> Ticket:
        self._check()
        self.upserts += 1
        # No await between the check and the insert: create-if-absent is atomic
        if ticket.id not in self.tickets:
            self.tickets[ticket.id] = ticket
        return self.tickets[ticket.id]

    async def bind_agent(self, ticket_id: str, binding: AgentBinding, ai_config: AiConfig) -> Ticket:
        self._check()
        self.bind_calls.append(binding.agent_id)
        ticket = self.tickets[ticket_id]
        if ticket.assigned_agent is None or ticket.assigned_agent.agent_id == binding.agent_id:
            ticket = ticket.model_copy(update={"assigned_agent": binding, "ai_config": ai_config})
            self.tickets[ticket_id] = ticket
        return ticket

    async def escalate(self, ticket_id: str) -> Ticket:
        self._check()
        ticket = self.tickets[ticket_id]
        config = (ticket.ai_config or AiConfig()).model_copy(update={"auto_response": False})
        ticket = ticket.model_copy(update={"ai_config": config, "status": "pending"})
        self.tickets[ticket_id] = ticket
        return ticket


class FakeAgentStore:
    def __init__(self, agents: Optional[List[AgentProfile]] = None, rules: Optional[List[ActivationRule]] = None):
        self.agents: Dict[str, AgentProfile] = {a.id: a for a in agents or []}
        self.rules: List[ActivationRule] = list(rules or [])
        self.fail_rules = False
        self.profile_calls = 0
        self.list_agent_calls = 0
        self.rule_calls = 0

    async def get_agent_profile(self, agent_id):
        self.profile_calls += 1
        return self.agents.get(agent_id)

    async def list_active_agents(self):
        self.list_agent_calls += 1
        return [a for a in self.agents.values() if a.is_active]

    async def list_activation_rules(self, instance_id=None):
        self.rule_calls += 1
        if self.fail_rules:
            raise StorageError("rules table unavailable")
        return [
            r for r in self.rules
            if instance_id is None or not r.conditions.instance_ids or instance_id in r.conditions.instance_ids
        ]


class FakeHistory:
    def __init__(self):
        self.entries: Dict[tuple, List[HistoryTurn]] = {}
        self.ids = set()

    async def append(self, message_id, conversation_id, instance_id, turn):
        if message_id in self.ids:
            return
        self.ids.add(message_id)
        self.entries.setdefault((conversation_id, instance_id), []).append(turn)

    async def recent(self, conversation_id, instance_id, limit):
        return self.entries.get((conversation_id, instance_id), [])[-limit:]


class FakeGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[tuple] = []

    async def send(self, instance_id, conversation_id, text):
        if self.fail:
            raise DispatchFailure("gateway returned 500")
        self.sent.append((instance_id, conversation_id, text))
        return DeliveryReceipt(message_id=f"out-{len(self.sent)}")


class FakeLanguageModel:
    def __init__(
        self,
        text: str = "O plano premium custa R$ 99 por mês.",
        confidence: float = 0.9,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.text = text
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str, params: ModelParams, timeout: float) -> GenerationResult:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, confidence=self.confidence, tokens_used=42, latency_ms=5)


class FakeExecutionLog:
    def __init__(self):
        self.entries: List[AgentExecution] = []
        self.fail = False

    async def append(self, execution: AgentExecution) -> None:
        if self.fail:
            raise StorageError("audit table unavailable")
        if any(e.message_id == execution.message_id for e in self.entries):
            return
        self.entries.append(execution)

    async def exists(self, message_id: str) -> bool:
        return any(e.message_id == message_id for e in self.entries)

    async def count_for_ticket(self, ticket_id, status=None):
        return sum(
            1 for e in self.entries
            if e.ticket_id == ticket_id and (status is None or e.status == status)
        )


# ----------------------------------------------------------------------
# Builders

def make_agent(agent_id="sales-bot", name="Sales Bot", **kwargs) -> AgentProfile:
    kwargs.setdefault("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return AgentProfile(id=agent_id, name=name, **kwargs)


def make_rule(rule_id, agent_id="sales-bot", priority=5, conditions=None, **kwargs) -> ActivationRule:
    kwargs.setdefault("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return ActivationRule(
        id=rule_id,
        agent_id=agent_id,
        priority=priority,
        conditions=RuleConditions(**(conditions or {})),
        **kwargs
    )


def make_ticket(conversation_id="5511999999999@s.whatsapp.net", instance_id="shop-1", **kwargs) -> Ticket:
    sequence = kwargs.pop("sequence", 0)
    return Ticket(
        id=ticket_id_for(conversation_id, instance_id, sequence),
        conversation_id=conversation_id,
        instance_id=instance_id,
        sequence=sequence,
        **kwargs
    )


def make_message(text="qual o preço do plano premium?", message_id="MSG-1", **kwargs) -> InboundMessage:
    kwargs.setdefault("conversation_id", "5511999999999@s.whatsapp.net")
    kwargs.setdefault("sender_id", kwargs["conversation_id"])
    kwargs.setdefault("instance_id", "shop-1")
    kwargs.setdefault("occurred_at", datetime.fromtimestamp(FIXED_TS, tz=timezone.utc))
    return InboundMessage(id=message_id, text=text, **kwargs)


def make_event(
    text="qual o preço do plano premium?",
    message_id="MSG-1",
    remote_jid="5511999999999@s.whatsapp.net",
    instance="shop-1",
    from_me=False,
    timestamp=FIXED_TS,
) -> dict:
    """A messages.upsert envelope as Evolution API posts it."""
    return {
        "event": "messages.upsert",
        "instance": instance,
        "data": {
            "key": {"id": message_id, "remoteJid": remote_jid, "fromMe": from_me},
            "pushName": "Maria",
            "messageType": "conversation",
            "message": {"conversation": text},
            "messageTimestamp": timestamp,
        },
    }
