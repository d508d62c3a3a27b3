"""
Selector inteligente de agentes.

Puntúa todos los agentes elegibles contra el contexto del mensaje y
retorna el mejor candidato. Señales:
- compatibilidad de categoría
- coincidencia de palabras clave / capacidades
- estilo de respuesta vs. sentimiento
- urgencia vs. agentes prioritarios
- disponibilidad del agente
- bonus por regla de activación que también coincide
"""

from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from app.schemas.agent import AgentProfile, MatchedRule, MessageContext, SelectionCandidate
from app.services.text_utils import contains_term, fold

logger = structlog.get_logger()


# Palabras clave por categoría
CATEGORY_KEYWORDS = {
    "vendas": ["comprar", "preço", "valor", "orçamento", "produto", "plano", "venda", "desconto", "promoção", "oferta"],
    "suporte": ["problema", "erro", "ajuda", "dúvida", "não funciona", "bug", "falha", "suporte", "assistência"],
    "tecnico": ["configurar", "instalar", "setup", "técnico", "integração", "api", "código", "sistema", "servidor"],
    "atendimento": ["informação", "horário", "funcionamento", "localização", "contato", "telefone", "endereço"],
    "financeiro": ["pagamento", "cobrança", "fatura", "boleto", "cartão", "pix", "financeiro", "reembolso"],
}

# Palabras de urgencia, de mayor a menor
URGENCY_KEYWORDS = {
    "urgent": ["urgente", "emergência", "imediato", "agora", "rápido", "crítico"],
    "high": ["importante", "prioridade", "preciso", "necessário"],
    "medium": ["quando", "possível", "gostaria"],
    "low": ["informação", "curiosidade", "talvez"],
}

# Palabras de sentimiento
SENTIMENT_KEYWORDS = {
    "negative": ["ruim", "péssimo", "insatisfeito", "problema", "reclamação", "irritado", "chateado"],
    "positive": ["obrigado", "ótimo", "excelente", "perfeito", "satisfeito", "feliz"],
}

# Pistas en el nombre del agente para inferir su categoría
CATEGORY_NAME_HINTS = {
    "suporte": ["suporte", "support"],
    "vendas": ["vendas", "sales", "sdr"],
    "tecnico": ["tecnico", "técnico", "technical"],
    "financeiro": ["financeiro", "finance", "billing"],
    "atendimento": ["atendimento", "customer", "recepção"],
}

# Sentimientos que atiende bien cada estilo de respuesta
STYLE_SENTIMENTS = {
    "supportive": ("negative", "neutral"),
    "friendly": ("positive", "neutral"),
    "technical": ("neutral",),
    "professional": ("neutral", "positive"),
}

CATEGORY_STYLE = {
    "suporte": "supportive",
    "vendas": "friendly",
    "tecnico": "technical",
}

# Pesos
WEIGHT_CATEGORY = 0.30
WEIGHT_KEYWORDS = 0.30
WEIGHT_SENTIMENT = 0.10
WEIGHT_URGENCY = 0.10
WEIGHT_AVAILABILITY = 0.05
WEIGHT_RULE_BOOST = 0.15

KEYWORD_SATURATION = 3
PRIORITY_AGENT_THRESHOLD = 7


def detect_category(folded_text: str) -> str:
    best, best_hits = "geral", 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if contains_term(folded_text, keyword))
        if hits > best_hits:
            best, best_hits = category, hits
    return best


def detect_urgency(folded_text: str) -> str:
    for level, keywords in URGENCY_KEYWORDS.items():
        if any(contains_term(folded_text, keyword) for keyword in keywords):
            return level
    return "medium"


def detect_sentiment(folded_text: str) -> str:
    for sentiment, keywords in SENTIMENT_KEYWORDS.items():
        if any(contains_term(folded_text, keyword) for keyword in keywords):
            return sentiment
    return "neutral"


def extract_keywords(folded_text: str) -> List[str]:
    found = []
    for keywords in CATEGORY_KEYWORDS.values():
        for keyword in keywords:
            if keyword not in found and contains_term(folded_text, keyword):
                found.append(keyword)
    return found


def agent_category(agent: AgentProfile) -> str:
    if agent.category:
        return fold(agent.category)
    name = fold(agent.name)
    for category, hints in CATEGORY_NAME_HINTS.items():
        if any(fold(hint) in name for hint in hints):
            return category
    return "geral"


def compute_confidence(score: float, reasons: int, keywords: int) -> float:
    """Monótona en el score y en la cantidad de señales que lo corroboran."""
    confidence = score
    if reasons >= 2:
        confidence += 0.05
    if reasons >= 3:
        confidence += 0.1
    if keywords >= 1:
        confidence += 0.05
    if keywords >= 2:
        confidence += 0.1
    return min(confidence, 1.0)


class IntelligentAgentSelector:
    """
    Selección de agente por puntuación.
    `select_best_agent` retorna None solo cuando ningún agente llega al
    piso mínimo; un candidato retornado todavía puede ser rechazado por
    los mínimos del orquestador.
    """

    def __init__(self, min_score: float = 0.3):
        self.min_score = min_score

    def enrich(self, context: MessageContext) -> MessageContext:
        folded = fold(context.text)
        return context.model_copy(update={
            "category": detect_category(folded),
            "urgency": detect_urgency(folded),
            "sentiment": detect_sentiment(folded),
            "keywords": extract_keywords(folded),
        })

    def rank(
        self,
        context: MessageContext,
        agents: Iterable[AgentProfile],
        matched_rules: Sequence[MatchedRule] = ()
    ) -> List[SelectionCandidate]:
        """Candidatos ordenados: score, luego confianza, luego orden de listado."""
        enriched = self.enrich(context)
        best_rule_priority: Dict[str, int] = {}
        for match in matched_rules:
            current = best_rule_priority.get(match.agent_id, 0)
            best_rule_priority[match.agent_id] = max(current, match.priority)

        scored = [
            (position, self.score_agent(agent, enriched, best_rule_priority.get(agent.id)))
            for position, agent in enumerate(agents)
            if agent.is_active
        ]
        scored.sort(key=lambda item: (-item[1].score, -item[1].confidence, item[0]))
        return [candidate for _, candidate in scored]

    def select_best_agent(
        self,
        context: MessageContext,
        agents: Iterable[AgentProfile],
        matched_rules: Sequence[MatchedRule] = ()
    ) -> Optional[SelectionCandidate]:
        ranked = self.rank(context, agents, matched_rules)
        if not ranked:
            logger.info("selector_no_agents")
            return None

        logger.info(
            "selector_scores",
            scores=[
                {"agent": c.agent.id, "score": round(c.score, 3), "confidence": round(c.confidence, 3)}
                for c in ranked[:5]
            ]
        )

        best = ranked[0]
        if best.score < self.min_score:
            logger.info("selector_below_floor", agent_id=best.agent.id, score=best.score, floor=self.min_score)
            return None

        logger.info("selector_selected", agent_id=best.agent.id, score=best.score, confidence=best.confidence)
        return best

    def score_agent(
        self,
        agent: AgentProfile,
        context: MessageContext,
        rule_priority: Optional[int] = None
    ) -> SelectionCandidate:
        score = 0.0
        reasons: List[str] = []
        folded_text = fold(context.text)

        # 1. Categoría
        category = agent_category(agent)
        category_match = bool(context.category) and (
            category == context.category
            or (category == "atendimento" and context.category == "geral")
        )
        if category_match:
            score += WEIGHT_CATEGORY
            reasons.append(f"categoria compatível: {context.category}")

        # 2. Palabras clave y capacidades
        matched_keywords = []
        for term in list(agent.keywords) + list(agent.capabilities):
            if term not in matched_keywords and contains_term(folded_text, term):
                matched_keywords.append(term)
        if matched_keywords:
            score += WEIGHT_KEYWORDS * min(len(matched_keywords), KEYWORD_SATURATION) / KEYWORD_SATURATION
            reasons.append(f"keywords compatíveis: {', '.join(matched_keywords)}")

        # 3. Estilo vs. sentimiento
        style = CATEGORY_STYLE.get(category, "professional")
        if context.sentiment in STYLE_SENTIMENTS[style]:
            score += WEIGHT_SENTIMENT
            reasons.append(f"estilo {style} compatível com sentimento {context.sentiment}")

        # 4. Urgencia
        if context.urgency in ("urgent", "high") and agent.priority >= PRIORITY_AGENT_THRESHOLD:
            score += WEIGHT_URGENCY
            reasons.append("agente prioritário para caso urgente")

        # 5. Disponibilidad
        score += WEIGHT_AVAILABILITY * agent.availability

        # 6. Regla que también coincide
        if rule_priority:
            score += WEIGHT_RULE_BOOST * rule_priority / 10
            reasons.append(f"regra de ativação com prioridade {rule_priority}")

        score = round(min(score, 1.0), 4)
        confidence = round(compute_confidence(score, len(reasons), len(matched_keywords)), 4)

        return SelectionCandidate(
            agent=agent,
            score=score,
            confidence=confidence,
            reasons=reasons,
            matched_keywords=matched_keywords,
            category_match=category_match,
        )
