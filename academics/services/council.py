# academics/services/council.py
"""
Décision du conseil de classe de fin d'année.

Barème (politique ministérielle, évaluée élève par élève, indépendamment du rang) :

    moyenne annuelle >= 16  -> passage, mention « excellent »
    moyenne annuelle >= 14  -> passage, mention « good »
    moyenne annuelle >= 12  -> passage, mention « fair »
    moyenne annuelle >= 10  -> passage, mention « pass »
    moyenne annuelle <  10  -> redoublement, pas de mention
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from django.db import models


class Decision(models.TextChoices):
    PROMOTE = "promote", "Admis(e) en classe supérieure"
    REPEAT = "repeat", "Redouble"


class Mention(models.TextChoices):
    EXCELLENT = "excellent", "Excellent"
    GOOD = "good", "Bien"
    FAIR = "fair", "Assez bien"
    PASS = "pass", "Passable"
    NONE = "none", "Aucune"


COUNCIL_THRESHOLDS = (
    (Decimal("16"), Mention.EXCELLENT),
    (Decimal("14"), Mention.GOOD),
    (Decimal("12"), Mention.FAIR),
    (Decimal("10"), Mention.PASS),
)

# Écart minimal entre deux trimestres pour parler de progression / régression
TREND_TOLERANCE = Decimal("0.5")


@dataclass(frozen=True)
class CouncilDecision:
    decision: str
    mention: str
    annual_average: float
    trend: Optional[str] = None


def compute_trend(term_averages: Sequence[Optional[float]]) -> Optional[str]:
    known = [Decimal(str(a)) for a in term_averages if a is not None]
    if len(known) < 2:
        return None
    delta = known[-1] - known[0]
    if delta >= TREND_TOLERANCE:
        return "up"
    if delta <= -TREND_TOLERANCE:
        return "down"
    return "stable"


def determine_council_decision(annual_average: float, term_averages: Optional[Sequence[Optional[float]]] = None) -> CouncilDecision:
    average = Decimal(str(annual_average))
    trend = compute_trend(term_averages) if term_averages else None

    for threshold, mention in COUNCIL_THRESHOLDS:
        if average >= threshold:
            return CouncilDecision(Decision.PROMOTE.value, mention.value, float(annual_average), trend)
    return CouncilDecision(Decision.REPEAT.value, Mention.NONE.value, float(annual_average), trend)
