"""
Tests for the execution gate.

Tests:
- Responses are sent only when confidence is strictly above 0.7
- Model timeouts and errors end in `error` without sending
- A failed send is recorded as `error` and never retried
- The prompt carries template, history, client data and message
"""
from dataclasses import replace

import pytest

from app.core.errors import ModelError
from app.schemas.message import HistoryTurn
from app.services.execution_gate import ExecutionGate, build_prompt
from tests.fakes import FakeGateway, FakeLanguageModel, make_agent, make_message, make_ticket

AGENT = make_agent("sales-bot", "Sales Bot", prompt_template="Você é o Sales Bot.")


@pytest.mark.asyncio
@pytest.mark.parametrize("confidence, sent", [(0.70, False), (0.71, True), (0.95, True), (0.2, False)])
async def test_dispatch_threshold_is_strict(policy, confidence, sent):
    gateway = FakeGateway()
    gate = ExecutionGate(FakeLanguageModel(confidence=confidence), gateway, policy)

    result = await gate.execute(make_ticket(), AGENT, make_message())

    assert result.dispatched is sent
    assert len(gateway.sent) == (1 if sent else 0)
    assert result.status == ("success" if sent else "low_confidence")
    assert result.confidence == confidence
    assert result.output == "O plano premium custa R$ 99 por mês."


@pytest.mark.asyncio
async def test_successful_send_targets_conversation(policy):
    gateway = FakeGateway()
    gate = ExecutionGate(FakeLanguageModel(), gateway, policy)

    result = await gate.execute(make_ticket(), AGENT, make_message(), rule_id="rule-sales")

    assert gateway.sent == [("shop-1", "5511999999999@s.whatsapp.net", "O plano premium custa R$ 99 por mês.")]
    assert result.receipt.message_id == "out-1"
    assert result.agent_id == "sales-bot"
    assert result.rule_id == "rule-sales"
    assert result.tokens_used == 42
    assert result.input == "qual o preço do plano premium?"


@pytest.mark.asyncio
async def test_empty_response_is_not_sent(policy):
    gateway = FakeGateway()
    gate = ExecutionGate(FakeLanguageModel(text="   ", confidence=0.99), gateway, policy)

    result = await gate.execute(make_ticket(), AGENT, make_message())

    assert result.status == "low_confidence"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_model_timeout_is_an_error(policy):
    gateway = FakeGateway()
    gate = ExecutionGate(FakeLanguageModel(delay=1.0), gateway, replace(policy, model_timeout=0.05))

    result = await gate.execute(make_ticket(), AGENT, make_message())

    assert result.status == "error"
    assert result.error.startswith("model_timeout")
    assert result.dispatched is False
    assert gateway.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ModelError("rate limited"), RuntimeError("connection reset")])
async def test_model_failure_is_an_error(policy, error):
    gateway = FakeGateway()
    gate = ExecutionGate(FakeLanguageModel(error=error), gateway, policy)

    result = await gate.execute(make_ticket(), AGENT, make_message())

    assert result.status == "error"
    assert result.error.startswith("model_error")
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_dispatch_failure_is_recorded_not_retried(policy):
    gateway = FakeGateway(fail=True)
    model = FakeLanguageModel()
    gate = ExecutionGate(model, gateway, policy)

    result = await gate.execute(make_ticket(), AGENT, make_message())

    assert result.status == "error"
    assert result.error.startswith("dispatch_failure")
    assert result.dispatched is False
    assert result.output == model.text
    assert len(model.prompts) == 1


def test_prompt_contains_template_history_and_message():
    history = [
        HistoryTurn(role="client", content="oi"),
        HistoryTurn(role="agent", content="Olá! Como posso ajudar?"),
        HistoryTurn(role="client", content="qual o preço do plano premium?"),
    ]
    prompt = build_prompt(AGENT, make_ticket(client_name="Maria"), make_message(sender_name=None), history)

    assert prompt.startswith("Você é o Sales Bot.")
    assert "Cliente: oi\nAtendente: Olá! Como posso ajudar?" in prompt
    assert "Cliente: qual o preço" not in prompt
    assert "- Nome: Maria" in prompt
    assert prompt.rstrip().endswith("Responda de forma profissional e útil:")
    assert 'Mensagem atual do cliente: "qual o preço do plano premium?"' in prompt


def test_prompt_uses_default_persona_without_template():
    prompt = build_prompt(make_agent(name="Helper"), make_ticket(), make_message(), [])

    assert prompt.startswith("Você é Helper, um assistente de atendimento")
    assert "Histórico da conversa" not in prompt
