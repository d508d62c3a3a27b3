"""
Modelos de base de datos.
"""

from app.models.ticket import TicketRecord
from app.models.agent import AgentRecord, ActivationRuleRecord
from app.models.execution import AgentExecutionRecord
from app.models.conversation import ConversationMessageRecord

__all__ = [
    "TicketRecord",
    "AgentRecord",
    "ActivationRuleRecord",
    "AgentExecutionRecord",
    "ConversationMessageRecord",
]
