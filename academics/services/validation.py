# academics/services/validation.py
from typing import Iterable, List, NamedTuple

from academics.services.averages import Scope, subject_score
from academics.services.grades import SubjectGrade


class TermValidation(NamedTuple):
    valid: bool
    missing_subjects: List[str]


def validate_term_requirements(subjects: Iterable[SubjectGrade], term) -> TermValidation:
    """
    Vérifie que chaque matière du programme de l'élève a sa note pour la portée
    demandée (ANNUAL : au moins un trimestre).

    Ne lève jamais d'exception et ne modifie rien : c'est la politique du cycle
    de vie des bulletins qui décide si un résultat invalide bloque la soumission.
    """
    scope = Scope(term)
    missing = [s.subject_name for s in subjects if subject_score(s, scope) is None]
    return TermValidation(valid=not missing, missing_subjects=missing)
