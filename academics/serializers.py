from rest_framework import serializers

from academics.models import MAX_SCORE, MIN_SCORE
from academics.services.grades import SubjectGrade


def _score_field():
    return serializers.DecimalField(
        max_digits=5, decimal_places=2,
        min_value=MIN_SCORE, max_value=MAX_SCORE,
        required=False, allow_null=True,
    )


def _as_subject_grade(data) -> SubjectGrade:
    return SubjectGrade(
        subject_id=data["subject_id"],
        subject_name=data["subject_name"],
        coefficient=data["coefficient"],
        t1=data.get("t1"),
        t2=data.get("t2"),
        t3=data.get("t3"),
        remark=data.get("remark") or None,
    )


# ---- NOTES D'UNE MATIÈRE ----
class SubjectGradeSerializer(serializers.Serializer):
    """
    Valide une ligne de notes reçue de l'extérieur avant qu'elle n'atteigne
    le moteur : coefficient >= 1, notes dans [0, 20] ou nulles.
    """
    subject_id = serializers.IntegerField(min_value=1)
    subject_name = serializers.CharField(max_length=100)
    coefficient = serializers.IntegerField(min_value=1)
    t1 = _score_field()
    t2 = _score_field()
    t3 = _score_field()
    remark = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def to_subject_grade(self) -> SubjectGrade:
        return _as_subject_grade(self.validated_data)


# ---- RELEVÉ D'UN ÉLÈVE ----
class StudentTermRecordSerializer(serializers.Serializer):
    student_id = serializers.CharField(max_length=20)
    subjects = SubjectGradeSerializer(many=True)

    def validate_subjects(self, value):
        ids = [s["subject_id"] for s in value]
        if len(ids) != len(set(ids)):
            raise serializers.ValidationError("Une matière apparaît plusieurs fois.")
        return value

    def to_subject_grades(self):
        return [_as_subject_grade(s) for s in self.validated_data["subjects"]]
