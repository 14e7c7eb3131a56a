# academics/services/grades.py
"""
Accès en lecture aux notes brutes.

Le moteur de bulletins ne lit les notes qu'à travers un ``GradeStore`` :
une liste de ``SubjectGrade`` (une ligne par matière et par année, avec les
trois trimestres) par élève. Le store ORM lit toute une classe en une seule
requête de notes pour que le classement repose sur un instantané cohérent.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from academics.models import MAX_SCORE, MIN_SCORE, Term

logger = logging.getLogger(__name__)

TERM_FIELDS = {Term.T1: "t1", Term.T2: "t2", Term.T3: "t3"}


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class SubjectGrade:
    subject_id: int
    subject_name: str
    coefficient: int
    t1: Optional[Decimal] = None
    t2: Optional[Decimal] = None
    t3: Optional[Decimal] = None
    remark: Optional[str] = None

    def __post_init__(self):
        if int(self.coefficient) < 1:
            raise ValueError(f"coefficient must be >= 1 for subject {self.subject_name!r}")
        for name in ("t1", "t2", "t3"):
            value = _to_decimal(getattr(self, name))
            if value is not None and not (MIN_SCORE <= value <= MAX_SCORE):
                raise ValueError(f"{name} score {value} out of range for subject {self.subject_name!r}")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "coefficient", int(self.coefficient))

    def score_for(self, term) -> Optional[Decimal]:
        return getattr(self, TERM_FIELDS[Term(term)])

    @property
    def scores(self) -> List[Decimal]:
        return [s for s in (self.t1, self.t2, self.t3) if s is not None]

    def to_dict(self) -> Dict:
        """Représentation JSON (copie figée stockée sur le bulletin)."""
        return {
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "coefficient": self.coefficient,
            "t1": None if self.t1 is None else str(self.t1),
            "t2": None if self.t2 is None else str(self.t2),
            "t3": None if self.t3 is None else str(self.t3),
            "remark": self.remark,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "SubjectGrade":
        return cls(
            subject_id=data["subject_id"],
            subject_name=data["subject_name"],
            coefficient=data["coefficient"],
            t1=_to_decimal(data.get("t1")),
            t2=_to_decimal(data.get("t2")),
            t3=_to_decimal(data.get("t3")),
            remark=data.get("remark"),
        )


class GradeStore(ABC):
    """Source de vérité (lecture seule) des notes."""

    @abstractmethod
    def get_grades(self, student_id, class_id, academic_year) -> List[SubjectGrade]:
        ...

    @abstractmethod
    def list_classmates(self, class_id, academic_year) -> List:
        ...

    def get_class_grades(self, class_id, academic_year) -> Dict[object, List[SubjectGrade]]:
        # Implémentation naïve ; les stores réels la surchargent par une lecture groupée
        return {
            sid: self.get_grades(sid, class_id, academic_year)
            for sid in self.list_classmates(class_id, academic_year)
        }


class InMemoryGradeStore(GradeStore):
    """
    Store en mémoire : {(class_id, academic_year): {student_id: [SubjectGrade]}}.
    Utile quand les notes arrivent déjà validées (SubjectGradeSerializer).
    """

    def __init__(self, data: Optional[Dict] = None):
        self._data: Dict = {}
        for key, by_student in (data or {}).items():
            self._data[key] = {sid: list(subjects) for sid, subjects in by_student.items()}

    def put(self, class_id, academic_year, student_id, subjects: Iterable[SubjectGrade]):
        self._data.setdefault((class_id, academic_year), {})[student_id] = list(subjects)

    def get_grades(self, student_id, class_id, academic_year) -> List[SubjectGrade]:
        return list(self._data.get((class_id, academic_year), {}).get(student_id, []))

    def list_classmates(self, class_id, academic_year) -> List:
        return list(self._data.get((class_id, academic_year), {}).keys())

    def get_class_grades(self, class_id, academic_year) -> Dict[object, List[SubjectGrade]]:
        return {sid: list(subjects) for sid, subjects in self._data.get((class_id, academic_year), {}).items()}


@dataclass
class _SubjectRow:
    subject_id: int
    subject_name: str
    coefficient: int
    scores: Dict[str, Optional[Decimal]] = field(default_factory=dict)
    remarks: Dict[str, str] = field(default_factory=dict)

    def freeze(self) -> SubjectGrade:
        remark = None
        for term in (Term.T3, Term.T2, Term.T1):
            if self.remarks.get(term):
                remark = self.remarks[term]
                break
        return SubjectGrade(
            subject_id=self.subject_id,
            subject_name=self.subject_name,
            coefficient=self.coefficient,
            t1=self.scores.get(Term.T1),
            t2=self.scores.get(Term.T2),
            t3=self.scores.get(Term.T3),
            remark=remark,
        )


class OrmGradeStore(GradeStore):
    """
    GradeStore adossé à l'ORM Django.

    ``get_class_grades`` lit toutes les notes de la classe en UNE requête
    (instantané cohérent pour le classement), puis les replie en mémoire par
    élève. Les matières obligatoires du programme apparaissent pour chaque
    élève, même sans note ; les matières facultatives seulement si l'élève
    a une note.
    """

    def list_classmates(self, class_id, academic_year) -> List:
        from core.models import Student

        return list(
            Student.objects.filter(school_class_id=class_id).order_by("id").values_list("id", flat=True)
        )

    def get_grades(self, student_id, class_id, academic_year) -> List[SubjectGrade]:
        return self._fold(class_id, academic_year, student_ids=[student_id]).get(student_id, [])

    def get_class_grades(self, class_id, academic_year) -> Dict[object, List[SubjectGrade]]:
        return self._fold(class_id, academic_year, student_ids=self.list_classmates(class_id, academic_year))

    def _fold(self, class_id, academic_year, student_ids) -> Dict[object, List[SubjectGrade]]:
        from django.db import transaction

        from academics.models import ClassSubject, Grade, SubjectComment

        # Toutes les notes de la classe en une seule requête : les rangs portent
        # sur un même état. Programme et appréciations sont des requêtes à part
        # (sous READ COMMITTED, pas d'instantané commun aux trois lectures).
        with transaction.atomic():
            curriculum = {
                cs.subject_id: cs
                for cs in ClassSubject.objects.filter(school_class_id=class_id).select_related("subject")
            }
            grade_rows = list(
                Grade.objects.filter(student_id__in=student_ids, academic_year=academic_year)
                .values_list("student_id", "subject_id", "subject__name", "term", "average_subject")
            )
            comment_rows = list(
                SubjectComment.objects.filter(student_id__in=student_ids, academic_year=academic_year)
                .values_list("student_id", "subject_id", "term", "comment")
            )

        # Grouper par élève puis par matière
        rows: Dict[object, Dict[int, _SubjectRow]] = {sid: {} for sid in student_ids}
        for sid in student_ids:
            for subject_id, cs in curriculum.items():
                if not cs.is_optional:
                    rows[sid][subject_id] = _SubjectRow(subject_id, cs.subject.name, cs.coefficient)

        for sid, subject_id, subject_name, term, average in grade_rows:
            line = rows[sid].get(subject_id)
            if line is None:
                cs = curriculum.get(subject_id)
                if cs is None:
                    # matière hors programme de la classe : coefficient 1
                    logger.debug("Grade for subject %s outside class %s curriculum", subject_id, class_id)
                    line = _SubjectRow(subject_id, subject_name, 1)
                else:
                    line = _SubjectRow(subject_id, cs.subject.name, cs.coefficient)
                rows[sid][subject_id] = line
            line.scores[term] = average

        for sid, subject_id, term, comment in comment_rows:
            line = rows[sid].get(subject_id)
            if line is not None and comment:
                line.remarks[term] = comment

        return {
            sid: [line.freeze() for line in sorted(by_subject.values(), key=lambda l: l.subject_name.lower())]
            for sid, by_subject in rows.items()
        }
