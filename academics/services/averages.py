# academics/services/averages.py
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional

from academics.services.grades import SubjectGrade


class Scope(str, Enum):
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"
    ANNUAL = "ANNUAL"


def _quant(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def subject_score(subject: SubjectGrade, scope) -> Optional[Decimal]:
    """
    Note retenue pour une matière selon la portée :
    - trimestre : la note du trimestre (None si absente)
    - ANNUAL : moyenne des trimestres renseignés (None si aucun)
    """
    scope = Scope(scope)
    if scope is Scope.ANNUAL:
        scores = subject.scores
        if not scores:
            return None
        return sum(scores, Decimal("0")) / Decimal(len(scores))
    return subject.score_for(scope.value)


def compute_weighted_average_exact(subjects: Iterable[SubjectGrade], scope) -> Optional[Decimal]:
    """Moyenne pondérée non arrondie ; les matières sans note sont exclues (ni numérateur ni dénominateur)."""
    weighted_total = Decimal("0")
    total_coeffs = Decimal("0")
    for subject in subjects:
        score = subject_score(subject, scope)
        if score is None:
            continue
        coeff = Decimal(subject.coefficient)
        weighted_total += score * coeff
        total_coeffs += coeff

    if total_coeffs == 0:
        return None
    return weighted_total / total_coeffs


def compute_weighted_average(subjects: Iterable[SubjectGrade], scope) -> Optional[float]:
    """
    Moyenne générale pondérée par les coefficients, arrondie à 2 décimales.

    Retourne None (jamais 0) quand aucune matière n'a de note pour la portée :
    l'appelant doit l'afficher comme « en attente ».
    """
    exact = compute_weighted_average_exact(subjects, scope)
    if exact is None:
        return None
    return float(_quant(exact))
