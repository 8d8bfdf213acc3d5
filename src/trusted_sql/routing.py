"""
Routing Classifier
==================

Decides how a question is answered: the trusted aggregation path, a single
generated candidate, or consensus voting across several candidates.

Complexity comes from qualifiers that narrow or reshape the data (time of day,
weekdays, explicit dates, payment/category filters, comparisons, per-day
breakdowns). Importance comes from ranking and comparison language. Only an
exact intent phrase with no complexity qualifies for the trusted path.
"""

import re
import unicodedata
from dataclasses import dataclass

import structlog

from trusted_sql.models import Classification, Question, RouteTier

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IntentRule:
    """Keyword table for one canonical metric."""

    metric: str
    priority: int
    strict: tuple[str, ...]
    loose: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()


INTENT_RULES = (
    IntentRule(
        metric="topProducts",
        priority=20,
        strict=(
            "productos mas vendidos",
            "producto mas vendido",
            "que productos vendi mas",
            "que producto vendi mas",
            "productos que mas vendi",
            "top productos",
            "top products",
            "best selling products",
            "best-selling products",
            "best sellers",
            "most sold products",
            "top selling",
        ),
        loose=("productos", "producto", "platillos", "products", "dishes"),
        excludes=("menos vendido", "menos vendidos", "least sold", "worst selling", "peor"),
    ),
    IntentRule(
        metric="reviewStats",
        priority=20,
        strict=(
            "resenas",
            "calificaciones",
            "calificacion promedio",
            "reviews",
            "ratings",
            "average rating",
        ),
        loose=("resena", "review", "rating", "opiniones", "comentarios", "feedback", "estrellas", "stars"),
    ),
    IntentRule(
        metric="averageTicket",
        priority=15,
        strict=(
            "ticket promedio",
            "ticket medio",
            "promedio por orden",
            "promedio por cuenta",
            "average ticket",
            "average order value",
        ),
        loose=("promedio", "average"),
    ),
    IntentRule(
        metric="orderCount",
        priority=15,
        strict=(
            "cuantas ordenes",
            "cuantos pedidos",
            "numero de ordenes",
            "total de ordenes",
            "how many orders",
            "number of orders",
            "order count",
        ),
        loose=("ordenes", "pedidos", "orders"),
    ),
    IntentRule(
        metric="sales",
        priority=10,
        strict=(
            "cuanto vendi",
            "cuanto vendimos",
            "cuanto he vendido",
            "total de ventas",
            "ventas totales",
            "mis ventas",
            "how much did i sell",
            "how much did we sell",
            "how much have i sold",
            "total sales",
            "my sales",
            "total revenue",
        ),
        loose=(
            "ventas",
            "venta",
            "vendi",
            "vendimos",
            "ingresos",
            "ingreso",
            "dinero",
            "facturacion",
            "revenue",
            "sales",
            "sold",
            "sell",
            "earned",
            "income",
        ),
    ),
)

# Checked in order; longer phrases first where they overlap
PERIOD_PHRASES = (
    ("last7days", ("ultimos 7 dias", "ultimos siete dias", "last 7 days", "past 7 days", "last seven days")),
    ("last30days", ("ultimos 30 dias", "ultimos treinta dias", "last 30 days", "past 30 days", "last thirty days")),
    ("lastWeek", ("semana pasada", "semana anterior", "last week", "previous week")),
    ("lastMonth", ("mes pasado", "mes anterior", "last month", "previous month")),
    ("thisWeek", ("esta semana", "this week")),
    ("thisMonth", ("este mes", "this month")),
    ("yesterday", ("ayer", "yesterday")),
    ("today", ("hoy", "today")),
)

_WEEKDAYS = (
    "lunes|martes|miercoles|jueves|viernes|sabados?|domingos?"
    "|mondays?|tuesdays?|wednesdays?|thursdays?|fridays?|saturdays?|sundays?"
)
_MONTHS = (
    "enero|febrero|marzo|abril|mayo|junio|julio|agosto|septiembre|octubre|noviembre|diciembre"
    "|january|february|march|april|june|july|august|september|october|november|december"
)

COMPARISON_PATTERNS = (
    r"\bvs\b",
    r"\bversus\b",
    r"\bcomparad[oa]s? con\b",
    r"\bcompared (to|with)\b",
    r"\bcompar(ar|e)\b",
)

COMPLEXITY_PATTERNS: dict[str, tuple[str, ...]] = {
    "time_of_day": (
        r"\b\d{1,2}\s*(am|pm)\b",
        r"\b\d{1,2}:\d{2}\b",
        r"\b(despues|antes) de las\b",
        r"\bentre las\b",
        r"\b(after|before) \d",
        r"\bbetween\b",
        r"\bpor la (manana|tarde|noche)\b",
        r"\bin the (morning|afternoon|evening)\b",
        r"\bat night\b",
    ),
    "weekday": (rf"\b({_WEEKDAYS})\b",),
    "month_name": (rf"\b({_MONTHS})\b",),
    "explicit_date": (
        r"\b\d{4}-\d{2}-\d{2}\b",
        r"\b\d{1,2}/\d{1,2}(/\d{2,4})?\b",
        r"\b\d{1,2} de [a-z]+\b",
    ),
    "filter": (
        r"\b(efectivo|tarjeta|cash|card|credito|debito|credit|debit)\b",
        r"\bpor (categoria|mesero|producto|metodo)\b",
        r"\bby (category|waiter|server|product|method)\b",
        r"\b(solo|only|excepto|except|excluding|sin contar)\b",
        r"\b(mayor|menor)(es)? (a|que) \d",
        r"\b(more|less|greater|fewer) than \d",
        r"\b(mesero|meseros|waiter|waiters|categoria|category|mesa|table)\b",
    ),
    "comparison": COMPARISON_PATTERNS,
    "temporal_breakdown": (
        r"\b(mejor|peor) (dia|hora|semana|mes)\b",
        r"\b(best|worst|busiest|slowest) (day|hour|week|month)\b",
        r"\bpor (dia|hora|semana|mes)\b",
        r"\b(per|by|each) (day|hour|week|month)\b",
        r"\b(diario|diarias?|daily|hourly)\b",
        r"\b(que|cual) (dia|fecha)\b",
        r"\b(which|what) (day|date)\b",
    ),
    "custom_range": (
        r"\b(ultimos|ultimas|last|past) \d+ (dias|semanas|meses|horas|days|weeks|months|hours)\b",
    ),
}

IMPORTANCE_PATTERNS: dict[str, tuple[str, ...]] = {
    "superlative": (
        r"\b(mas|most|mejor|mejores|best|peor|peores|worst|top|menos|least)\b",
        r"\b(highest|lowest|mayor|menor|maximo|minimo|record|ranking)\b",
    ),
    "comparison": COMPARISON_PATTERNS,
}


def normalize(text: str) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = re.sub(r"[¿?¡!,;\"'()]", " ", stripped)
    return re.sub(r"\s+", " ", stripped).strip()


def _contains(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])", text) is not None


def _best_intent(text: str, loose: bool) -> str | None:
    matched = []
    for rule in INTENT_RULES:
        if any(_contains(text, phrase) for phrase in rule.excludes):
            continue
        phrases = rule.loose if loose else rule.strict
        if any(_contains(text, phrase) for phrase in phrases):
            matched.append(rule)
    if not matched:
        return None

    top = max(rule.priority for rule in matched)
    winners = [rule for rule in matched if rule.priority == top]
    if len(winners) > 1:
        # Two different metrics equally likely: not an exact match
        return None
    return winners[0].metric


def detect_intent(text: str, allow_loose: bool = False) -> str | None:
    """
    Map a question onto a canonical metric.

    Args:
        text: Question text (raw or normalized)
        allow_loose: Fall back to single-keyword matches when no exact
                     phrase is present

    Returns:
        Metric name, or None when nothing (or more than one metric) matches
    """
    normalized = normalize(text)
    intent = _best_intent(normalized, loose=False)
    if intent is None and allow_loose:
        intent = _best_intent(normalized, loose=True)
    return intent


def detect_period(text: str) -> str | None:
    """Return the relative period named in the question, if any."""
    normalized = normalize(text)
    for period, phrases in PERIOD_PHRASES:
        if any(_contains(normalized, phrase) for phrase in phrases):
            return period
    return None


def _signals(text: str, table: dict[str, tuple[str, ...]]) -> tuple[str, ...]:
    return tuple(
        name for name, patterns in table.items() if any(re.search(p, text) for p in patterns)
    )


def complexity_signals(text: str) -> tuple[str, ...]:
    normalized = normalize(text)
    signals = list(_signals(normalized, COMPLEXITY_PATTERNS))
    if "custom_range" in signals and detect_period(normalized) is not None:
        # "last 7 days" / "last 30 days" are supported periods, not custom ranges
        signals.remove("custom_range")
    return tuple(signals)


def importance_signals(text: str) -> tuple[str, ...]:
    return _signals(normalize(text), IMPORTANCE_PATTERNS)


_DAY_WORD = re.compile(r"\b(dia|dias|day|days|fecha|fechas|date|dates)\b")

# Thresholds ("more than 10") and rolling windows ("last 7 days") are not day claims
_NOT_A_CLAIM = (
    r"\b(mas|menos) de \d",
    r"\b(more|less|fewer) than \d",
    r"\b(ultimos|ultimas|last|past) \d+ (dias|days)\b",
)


def claims_specific_day(text: str) -> bool:
    """
    Whether the question asks which single day stood out.

    True for a day/date word together with superlative language, e.g.
    "what day did I sell the most" or "en que fecha tuve mas ventas".
    """
    normalized = normalize(text)
    for pattern in _NOT_A_CLAIM:
        normalized = re.sub(pattern, " ", normalized)
    for _, phrases in PERIOD_PHRASES:
        for phrase in phrases:
            normalized = re.sub(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])", " ", normalized)
    if not _DAY_WORD.search(normalized):
        return False
    return "superlative" in _signals(normalized, IMPORTANCE_PATTERNS)


class RoutingClassifier:
    """
    Keyword-based routing policy.

    - exact intent and no complexity: TRUSTED
    - complex and important: CONSENSUS
    - everything else (including ambiguous or unmapped questions): SINGLE
    """

    def __init__(self, default_period: str = "thisMonth") -> None:
        self.default_period = default_period

    @property
    def name(self) -> str:
        return "routing_classifier"

    def classify(self, question: Question | str) -> Classification:
        text = question.text if isinstance(question, Question) else question

        intent = detect_intent(text)
        period = detect_period(text)
        complexity = complexity_signals(text)
        importance = importance_signals(text)

        if intent is not None and not complexity:
            tier = RouteTier.TRUSTED
            period = period or self.default_period
        elif complexity and importance:
            tier = RouteTier.CONSENSUS
        else:
            tier = RouteTier.SINGLE

        classification = Classification(
            tier=tier,
            matched_intent=intent,
            period=period,
            complexity_signals=complexity,
            importance_signals=importance,
        )
        logger.debug(
            "question_classified",
            tier=tier.value,
            intent=intent,
            period=period,
            complexity=list(complexity),
            importance=list(importance),
        )
        return classification
