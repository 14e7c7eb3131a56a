# academics/tests.py
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import SimpleTestCase, TestCase
from django.test.utils import CaptureQueriesContext

from academics.models import ClassSubject, Grade, Level, SchoolClass, Subject, SubjectComment
from academics.serializers import StudentTermRecordSerializer, SubjectGradeSerializer
from academics.services.averages import compute_weighted_average, compute_weighted_average_exact
from academics.services.council import compute_trend, determine_council_decision
from academics.services.grades import InMemoryGradeStore, OrmGradeStore, SubjectGrade
from academics.services.report_cards import (
    compute_class_rank, compute_class_statistics, rank_averages, rank_class, summarize_averages,
)
from academics.services.validation import validate_term_requirements
from core.models import Student

User = get_user_model()


def sg(subject_id, name, coef, t1=None, t2=None, t3=None, remark=None):
    return SubjectGrade(subject_id=subject_id, subject_name=name, coefficient=coef, t1=t1, t2=t2, t3=t3, remark=remark)


class SubjectGradeTest(SimpleTestCase):
    def test_coefficient_must_be_positive(self):
        with self.assertRaises(ValueError):
            sg(1, "Maths", 0, t1=12)

    def test_score_out_of_range(self):
        with self.assertRaises(ValueError):
            sg(1, "Maths", 2, t1=21)
        with self.assertRaises(ValueError):
            sg(1, "Maths", 2, t2=-1)

    def test_scores_are_decimals(self):
        grade = sg(1, "Maths", 2, t1=12.5, t3="14")
        self.assertEqual(grade.t1, Decimal("12.5"))
        self.assertEqual(grade.t3, Decimal("14"))
        self.assertEqual(grade.scores, [Decimal("12.5"), Decimal("14")])

    def test_snapshot_dict(self):
        grade = sg(3, "Anglais", 2, t1=Decimal("11.25"), remark="Bien")
        data = grade.to_dict()
        self.assertEqual(data["t1"], "11.25")
        self.assertIsNone(data["t2"])
        self.assertEqual(SubjectGrade.from_dict(data), grade)


class WeightedAverageTest(SimpleTestCase):
    def test_null_score_is_excluded_not_zero(self):
        subjects = [sg(1, "Maths", 4, t1=16), sg(2, "Physique", 3, t1=None)]
        self.assertEqual(compute_weighted_average(subjects, "T1"), 16.0)

    def test_no_score_returns_none(self):
        subjects = [sg(1, "Maths", 4), sg(2, "Physique", 3)]
        self.assertIsNone(compute_weighted_average(subjects, "T1"))
        self.assertIsNone(compute_weighted_average([], "ANNUAL"))

    def test_term_scope_uses_only_that_term(self):
        subjects = [sg(1, "Maths", 2, t1=8, t2=14), sg(2, "Français", 1, t1=20, t2=11)]
        self.assertEqual(compute_weighted_average(subjects, "T2"), 13.0)

    def test_t3_scope(self):
        subjects = [sg(1, "Maths", 4, t3=14), sg(2, "Physique", 3, t3=11)]
        self.assertEqual(compute_weighted_average(subjects, "T3"), 12.71)

    def test_annual_averages_available_terms_first(self):
        subjects = [sg(1, "Maths", 2, t1=10, t2=14), sg(2, "Français", 1, t3=18), sg(3, "EPS", 1)]
        # Maths -> 12, Français -> 18, EPS exclue
        self.assertEqual(compute_weighted_average(subjects, "ANNUAL"), 14.0)

    def test_rounded_once_half_up(self):
        subjects = [sg(1, "Maths", 3, t1=13), sg(2, "Français", 1, t1=Decimal("14.5"))]
        self.assertEqual(compute_weighted_average_exact(subjects, "T1"), Decimal("13.375"))
        self.assertEqual(compute_weighted_average(subjects, "T1"), 13.38)


class RankingTest(SimpleTestCase):
    def test_competition_ranking(self):
        averages = [18, 18, 15, 12]
        self.assertEqual([compute_class_rank(a, averages) for a in averages], [1, 1, 3, 4])

    def test_rank_averages_skips_null(self):
        ranks = rank_averages({"a": 18.0, "b": 18.0, "c": 15.0, "d": 12.0, "e": None})
        self.assertEqual(ranks, {"a": 1, "b": 1, "c": 3, "d": 4})

    def test_statistics(self):
        stats = summarize_averages([18, 18, 15, 12, 8, None])
        self.assertEqual(stats.count, 5)
        self.assertEqual(stats.mean, 14.2)
        self.assertEqual(stats.min, 8.0)
        self.assertEqual(stats.max, 18.0)
        self.assertEqual(stats.pass_rate, 0.8)

    def test_statistics_without_ranked_student(self):
        stats = summarize_averages([None, None])
        self.assertEqual(stats.count, 0)
        self.assertIsNone(stats.pass_rate)
        self.assertIsNone(stats.mean)

    def test_rank_class_reports_unranked(self):
        class_grades = {
            "S1": [sg(1, "Maths", 4, t1=18)],
            "S2": [sg(1, "Maths", 4, t1=12)],
            "S3": [sg(1, "Maths", 4)],
        }
        ranking = rank_class(class_grades, "T1", class_id=1, academic_year="2025-2026")
        self.assertEqual(ranking.ranks, {"S1": 1, "S2": 2})
        self.assertEqual(ranking.unranked, ["S3"])
        self.assertIsNone(ranking.per_student["S3"])
        self.assertEqual(ranking.stats.count, 2)
        self.assertEqual(ranking.stats.pass_rate, 1.0)

    def test_statistics_from_store(self):
        store = InMemoryGradeStore()
        store.put(7, "2025-2026", "S1", [sg(1, "Maths", 1, t2=9)])
        store.put(7, "2025-2026", "S2", [sg(1, "Maths", 1, t2=11)])
        ranking = compute_class_statistics(7, "T2", "2025-2026", store=store)
        self.assertEqual(ranking.rank_of("S2"), 1)
        self.assertEqual(ranking.rank_of("S1"), 2)
        self.assertEqual(ranking.stats.pass_rate, 0.5)


class TermValidationTest(SimpleTestCase):
    def test_missing_subjects_are_reported(self):
        subjects = [sg(1, "Maths", 4, t1=16), sg(2, "Physique", 3)]
        result = validate_term_requirements(subjects, "T1")
        self.assertFalse(result.valid)
        self.assertEqual(result.missing_subjects, ["Physique"])

    def test_annual_needs_at_least_one_term(self):
        subjects = [sg(1, "Maths", 4, t2=16), sg(2, "Physique", 3)]
        result = validate_term_requirements(subjects, "ANNUAL")
        self.assertEqual(result.missing_subjects, ["Physique"])
        self.assertTrue(validate_term_requirements(subjects[:1], "ANNUAL").valid)


class CouncilDecisionTest(SimpleTestCase):
    def test_boundaries(self):
        self.assertEqual(determine_council_decision(15.99).mention, "good")
        self.assertEqual(determine_council_decision(16.00).mention, "excellent")
        self.assertEqual(determine_council_decision(9.99).decision, "repeat")
        self.assertEqual(determine_council_decision(9.99).mention, "none")
        decision = determine_council_decision(10.00)
        self.assertEqual((decision.decision, decision.mention), ("promote", "pass"))
        self.assertEqual(determine_council_decision(12).mention, "fair")
        self.assertEqual(determine_council_decision(14).mention, "good")

    def test_trend_does_not_change_decision(self):
        decision = determine_council_decision(11, [14, 12, 9])
        self.assertEqual(decision.trend, "down")
        self.assertEqual(decision.decision, "promote")

    def test_trend(self):
        self.assertEqual(compute_trend([10, 12, 13]), "up")
        self.assertEqual(compute_trend([14, 13.8]), "stable")
        self.assertIsNone(compute_trend([None, 12]))


class GradeSerializerTest(SimpleTestCase):
    def test_valid_payload(self):
        s = SubjectGradeSerializer(data={"subject_id": 1, "subject_name": "Maths", "coefficient": 4, "t1": "15.5"})
        self.assertTrue(s.is_valid(), s.errors)
        grade = s.to_subject_grade()
        self.assertEqual(grade.t1, Decimal("15.5"))
        self.assertIsNone(grade.t2)

    def test_out_of_range_score(self):
        s = SubjectGradeSerializer(data={"subject_id": 1, "subject_name": "Maths", "coefficient": 4, "t1": 25})
        self.assertFalse(s.is_valid())
        self.assertIn("t1", s.errors)

    def test_zero_coefficient(self):
        s = SubjectGradeSerializer(data={"subject_id": 1, "subject_name": "Maths", "coefficient": 0})
        self.assertFalse(s.is_valid())
        self.assertIn("coefficient", s.errors)

    def test_duplicate_subjects_rejected(self):
        row = {"subject_id": 1, "subject_name": "Maths", "coefficient": 4, "t1": 12}
        s = StudentTermRecordSerializer(data={"student_id": "S000001", "subjects": [row, row]})
        self.assertFalse(s.is_valid())
        self.assertIn("subjects", s.errors)

    def test_record_to_subject_grades(self):
        s = StudentTermRecordSerializer(data={
            "student_id": "S000001",
            "subjects": [
                {"subject_id": 1, "subject_name": "Maths", "coefficient": 4, "t1": 16},
                {"subject_id": 2, "subject_name": "Physique", "coefficient": 3, "t1": None},
            ],
        })
        self.assertTrue(s.is_valid(), s.errors)
        self.assertEqual(compute_weighted_average(s.to_subject_grades(), "T1"), 16.0)


class OrmGradeStoreTest(TestCase):
    year = "2025-2026"

    def setUp(self):
        level = Level.objects.create(name="6e")
        self.school_class = SchoolClass.objects.create(name="6e A", level=level)
        self.math = Subject.objects.create(name="Maths")
        self.physics = Subject.objects.create(name="Physique")
        self.music = Subject.objects.create(name="Musique")
        ClassSubject.objects.create(school_class=self.school_class, subject=self.math, coefficient=4)
        ClassSubject.objects.create(school_class=self.school_class, subject=self.physics, coefficient=3)
        ClassSubject.objects.create(school_class=self.school_class, subject=self.music, coefficient=1, is_optional=True)

        self.s1 = Student.objects.create(user=User.objects.create_user("ama"), school_class=self.school_class)
        self.s2 = Student.objects.create(user=User.objects.create_user("kofi"), school_class=self.school_class)

        Grade.objects.create(student=self.s1, subject=self.math, term="T1", academic_year=self.year, devoir1=Decimal("16"))
        Grade.objects.create(student=self.s2, subject=self.music, term="T1", academic_year=self.year, devoir1=Decimal("12"))
        Grade.objects.create(student=self.s2, subject=self.math, term="T1", academic_year="2024-2025", devoir1=Decimal("5"))
        SubjectComment.objects.create(student=self.s1, subject=self.math, term="T1", academic_year=self.year, comment="Bon travail")

    def test_grade_average_from_interrogations_and_devoirs(self):
        grade = Grade.objects.create(
            student=self.s1, subject=self.physics, term="T2", academic_year=self.year,
            interrogation1=Decimal("10"), interrogation2=Decimal("14"), devoir1=Decimal("15"),
        )
        self.assertEqual(grade.average_interro, Decimal("12"))
        self.assertEqual(Decimal(str(grade.average_subject)), Decimal("13.5"))

    def test_class_grades_fold(self):
        grades = OrmGradeStore().get_class_grades(self.school_class.id, self.year)
        self.assertEqual(set(grades), {self.s1.id, self.s2.id})

        s1 = {g.subject_name: g for g in grades[self.s1.id]}
        # matière obligatoire sans note présente, facultative absente
        self.assertEqual(set(s1), {"Maths", "Physique"})
        self.assertEqual(s1["Maths"].t1, Decimal("16"))
        self.assertEqual(s1["Maths"].coefficient, 4)
        self.assertEqual(s1["Maths"].remark, "Bon travail")
        self.assertIsNone(s1["Physique"].t1)

        s2 = {g.subject_name: g for g in grades[self.s2.id]}
        self.assertEqual(set(s2), {"Maths", "Musique", "Physique"})
        self.assertIsNone(s2["Maths"].t1)  # note d'une autre année ignorée
        self.assertEqual(s2["Musique"].t1, Decimal("12"))

    def test_class_grades_read_is_batched(self):
        store = OrmGradeStore()
        with CaptureQueriesContext(connection) as two:
            store.get_class_grades(self.school_class.id, self.year)

        s3 = Student.objects.create(user=User.objects.create_user("yao"), school_class=self.school_class)
        Grade.objects.create(student=s3, subject=self.math, term="T1", academic_year=self.year, devoir1=Decimal("9"))
        with CaptureQueriesContext(connection) as three:
            grades = store.get_class_grades(self.school_class.id, self.year)

        # une requête pour toutes les notes, quel que soit l'effectif
        self.assertEqual(len(three.captured_queries), len(two.captured_queries))
        grade_reads = [
            q for q in three.captured_queries
            if q["sql"].lstrip().upper().startswith("SELECT") and 'FROM "academics_grade"' in q["sql"]
        ]
        self.assertEqual(len(grade_reads), 1)
        yao = {g.subject_name: g for g in grades[s3.id]}
        self.assertEqual(yao["Maths"].t1, Decimal("9"))

    def test_single_student(self):
        grades = OrmGradeStore().get_grades(self.s1.id, self.school_class.id, self.year)
        self.assertEqual([g.subject_name for g in grades], ["Maths", "Physique"])

    def test_class_statistics(self):
        ranking = compute_class_statistics(self.school_class.id, "T1", self.year)
        self.assertEqual(ranking.per_student[self.s1.id], 16.0)
        self.assertEqual(ranking.per_student[self.s2.id], 12.0)
        self.assertEqual(ranking.rank_of(self.s1.id), 1)
        self.assertEqual(ranking.rank_of(self.s2.id), 2)
        self.assertEqual(ranking.stats.mean, 14.0)
