"""
Servicio de IA - Genera respuestas de agentes usando OpenAI.
"""

import time
from typing import Optional

import openai
import structlog

from app.core.config import settings
from app.core.errors import ModelError, ModelTimeout
from app.schemas.agent import ModelParams
from app.schemas.execution import GenerationResult

logger = structlog.get_logger()


# Frases que indican una respuesta fallida o evasiva
UNCERTAIN_MARKERS = ("erro", "desculpe, não posso", "não entendi")


def estimate_confidence(response: str, user_message: str) -> float:
    """
    Confianza heurística de una respuesta generada (0-1).
    """
    text = (response or "").strip()
    if not text:
        return 0.0

    confidence = 0.7

    # Tamaño adecuado (ni muy corta ni muy larga)
    if 20 <= len(text) <= 500:
        confidence += 0.1

    lowered = text.lower()
    if not any(marker in lowered for marker in UNCERTAIN_MARKERS):
        confidence += 0.1

    # Respuesta contextual: comparte palabras con la pregunta
    input_words = [w for w in user_message.lower().split() if len(w) > 3]
    response_words = set(lowered.split())
    common = [w for w in input_words if w in response_words]
    if common:
        confidence += min(0.1, len(common) * 0.02)

    return round(min(1.0, confidence), 4)


def _extract_user_message(prompt: str) -> str:
    marker = "Mensagem atual do cliente: \""
    start = prompt.rfind(marker)
    if start == -1:
        return ""
    start += len(marker)
    end = prompt.find("\"\n", start)
    return prompt[start:end] if end != -1 else prompt[start:]


class OpenAILanguageModelService:
    """
    Implementación de LanguageModelService sobre chat completions.
    """

    def __init__(self, api_key: str = None, default_model: str = None, client: Optional[openai.AsyncOpenAI] = None):
        self.default_model = default_model or settings.openai_model
        self.client = client or openai.AsyncOpenAI(api_key=api_key or settings.openai_api_key)

    async def generate(self, prompt: str, params: ModelParams, timeout: float) -> GenerationResult:
        model = params.model or self.default_model
        start = time.monotonic()

        logger.info("calling_openai", model=model, prompt_length=len(prompt))

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            logger.error("openai_timeout", model=model, timeout=timeout)
            raise ModelTimeout(str(e)) from e
        except openai.APIError as e:
            logger.error("openai_api_error", model=model, error=str(e))
            raise ModelError(str(e)) from e

        text = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else 0
        latency_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "openai_response",
            tokens=tokens_used,
            latency_ms=latency_ms,
            response_preview=text[:50]
        )

        return GenerationResult(
            text=text,
            confidence=estimate_confidence(text, _extract_user_message(prompt)),
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )
