# academics/services/report_cards.py
"""
Moyennes, rangs et statistiques d'une classe pour un trimestre.

Les notes de toute la classe sont lues une seule fois (``get_class_grades``),
repliées en moyennes par élève, puis le classement est calculé en mémoire.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from academics.services.averages import Scope, compute_weighted_average
from academics.services.grades import GradeStore, OrmGradeStore, SubjectGrade

PASS_MARK = 10


@dataclass(frozen=True)
class ClassStatistics:
    count: int
    mean: Optional[float]
    min: Optional[float]
    max: Optional[float]
    pass_rate: Optional[float]


@dataclass(frozen=True)
class ClassRanking:
    class_id: object
    scope: str
    academic_year: str
    per_student: Dict[object, Optional[float]]
    ranks: Dict[object, int]
    unranked: List = field(default_factory=list)
    stats: ClassStatistics = None

    def rank_of(self, student_id) -> Optional[int]:
        return self.ranks.get(student_id)


def compute_class_rank(student_average: float, all_averages: Iterable[float]) -> int:
    """Rang de compétition : 1 + nombre de moyennes strictement supérieures."""
    return 1 + sum(1 for avg in all_averages if avg is not None and avg > student_average)


def rank_averages(per_student: Dict[object, Optional[float]]) -> Dict[object, int]:
    """
    Classement de compétition (1, 1, 3, 4...) des élèves ayant une moyenne.
    Les moyennes None sont exclues.
    """
    with_avg = [(sid, avg) for sid, avg in per_student.items() if avg is not None]
    # Tri décroissant par moyenne, stabilisé par identifiant
    with_avg.sort(key=lambda item: (-item[1], str(item[0])))

    ranks: Dict[object, int] = {}
    last_avg = None
    rank = 0
    seen = 0
    for sid, avg in with_avg:
        seen += 1
        if last_avg is None or avg != last_avg:
            rank = seen
            last_avg = avg
        ranks[sid] = rank
    return ranks


def summarize_averages(averages: Iterable[Optional[float]]) -> ClassStatistics:
    ranked = [Decimal(str(a)) for a in averages if a is not None]
    if not ranked:
        return ClassStatistics(count=0, mean=None, min=None, max=None, pass_rate=None)

    count = len(ranked)
    mean = sum(ranked, Decimal("0")) / Decimal(count)
    passed = sum(1 for a in ranked if a >= PASS_MARK)
    return ClassStatistics(
        count=count,
        mean=round(float(mean), 2),
        min=float(min(ranked)),
        max=float(max(ranked)),
        pass_rate=round(passed / count, 4),
    )


def rank_class(class_grades: Dict[object, List[SubjectGrade]], scope, class_id=None, academic_year="") -> ClassRanking:
    """Replie un instantané de classe déjà chargé en moyennes, rangs et statistiques."""
    scope = Scope(scope)
    per_student = {
        sid: compute_weighted_average(subjects, scope)
        for sid, subjects in class_grades.items()
    }
    ranks = rank_averages(per_student)
    unranked = sorted((sid for sid, avg in per_student.items() if avg is None), key=str)
    return ClassRanking(
        class_id=class_id,
        scope=scope.value,
        academic_year=academic_year,
        per_student=per_student,
        ranks=ranks,
        unranked=unranked,
        stats=summarize_averages(per_student.values()),
    )


def compute_class_statistics(class_id, term, academic_year, store: Optional[GradeStore] = None) -> ClassRanking:
    store = store or OrmGradeStore()
    class_grades = store.get_class_grades(class_id, academic_year)
    return rank_class(class_grades, term, class_id=class_id, academic_year=academic_year)
