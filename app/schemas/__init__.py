"""
Esquemas Pydantic del motor de tickets.
"""

from app.schemas.message import InboundMessage, HistoryTurn, WebhookResponse
from app.schemas.ticket import Ticket, AgentBinding, AiConfig, EscalationConfig
from app.schemas.agent import (
    AgentProfile,
    ActivationRule,
    RuleConditions,
    TimeWindow,
    MatchedRule,
    MessageContext,
    SelectionCandidate,
)
from app.schemas.execution import (
    GenerationResult,
    DeliveryReceipt,
    ExecutionResult,
    AgentExecution,
    PipelineOutcome,
)

__all__ = [
    "InboundMessage",
    "HistoryTurn",
    "WebhookResponse",
    "Ticket",
    "AgentBinding",
    "AiConfig",
    "EscalationConfig",
    "AgentProfile",
    "ActivationRule",
    "RuleConditions",
    "TimeWindow",
    "MatchedRule",
    "MessageContext",
    "SelectionCandidate",
    "GenerationResult",
    "DeliveryReceipt",
    "ExecutionResult",
    "AgentExecution",
    "PipelineOutcome",
]
