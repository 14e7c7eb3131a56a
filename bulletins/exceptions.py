# bulletins/exceptions.py
from django.core.exceptions import PermissionDenied


class BulletinError(Exception):
    pass


class InvalidTransition(BulletinError):
    """Transition refusée par la machine à états ; rien n'a été modifié."""

    def __init__(self, current_state, requested_transition):
        self.current_state = current_state
        self.requested_transition = requested_transition
        super().__init__(f"Cannot {requested_transition} a bulletin in state {current_state!r}")


class ValidationIncomplete(BulletinError):
    """Notes manquantes alors que la politique de soumission ne tolère pas de trous."""

    def __init__(self, missing_subjects, term=None):
        self.missing_subjects = list(missing_subjects)
        self.term = term
        subjects = ", ".join(self.missing_subjects) or "general average not computable"
        super().__init__(f"Term requirements not met ({term}): {subjects}")


class TransitionNotPermitted(PermissionDenied):
    def __init__(self, role, requested_transition):
        self.role = role
        self.requested_transition = requested_transition
        super().__init__(f"Role {role!r} may not {requested_transition} a bulletin")


class IdempotencyConflict(BulletinError):
    """L'opération a déjà été effectuée pour cette clé : à traiter comme un succès sans effet."""

    def __init__(self, key):
        self.key = key
        super().__init__(f"Operation already performed for {key}")
