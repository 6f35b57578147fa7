import json
import os
import shutil
import tempfile
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from django.urls import reverse

from . import services
from .choices import ExamRound, FailureReason, Gender, GradeLevel, ReportMode, ResultStatus
from .engine import (
    GradeDescriptor, GradeRecord, Mark, PolicyConfig, ResultRecord, SecondRoundScore,
    Student, Subject, SubjectCatalog, TermScore, aggregate, certificate_for, evaluate,
    evaluate_cohort, grade_groups, high_achievers, rank, scale_score, stage_group,
    subject_statistics, top_students, totals,
)
from .engine.results import OVERALL_TOTAL
from .engine.scaling import displayed_min_score
from .forms import ReportOptionsForm
from .sheets import SheetError, read_grade_sheet, read_student_roster
from .workbook import WorkbookError, load_workbook, merge_grades, workbook_digest


def make_subject(id='math', max_score=50, work=10, practical=0, exam=40, **kwargs):
    kwargs.setdefault('name', id.title())
    kwargs.setdefault('min_score', Decimal(max_score) / 2)
    kwargs.setdefault('grade_levels', tuple(GradeLevel))
    return Subject(
        id=id, max_score=max_score, work_max=work, practical_max=practical, exam_max=exam, **kwargs
    )


def term(work=None, exam=None, practical=None):
    return TermScore(
        work=Mark.from_raw(work), practical=Mark.from_raw(practical), exam=Mark.from_raw(exam)
    )


def record(term1=(), term2=(), second=None, excused=False):
    second_round = None
    if second is not None:
        second_round = SecondRoundScore(exam=Mark.from_raw(second), is_excused=excused)
    return GradeRecord(term1=term(*term1), term2=term(*term2), second_round=second_round)


WORKBOOK = {
    'students': [
        {'id': 's1', 'name': 'Omar', 'gradeLevel': 'm1', 'gender': 'ذكر', 'seatingNumber': 101},
        {'id': 's2', 'name': 'Mona', 'gradeLevel': 'm1', 'gender': 'أنثى', 'seatingNumber': 102},
        {'id': 's3', 'name': 'Ali', 'gradeLevel': 'p1', 'gender': 'ذكر'},
    ],
    'subjects': [
        {
            'id': 'arabic', 'name': 'Arabic', 'maxScore': 50, 'minScore': 25,
            'yearWork': 10, 'practicalScore': 0, 'examScore': 40, 'certificateMax': 100,
            'isAddedToTotal': True, 'isBasic': True, 'stage': 'all',
        },
        {
            'id': 'art', 'name': 'Art', 'maxScore': 20, 'minScore': 10,
            'yearWork': 20, 'practicalScore': 0, 'examScore': 0,
            'isAddedToTotal': False, 'isBasic': False, 'gradeLevels': ['m1', 'p1'],
        },
    ],
    'grades': {
        's1': {
            'arabic': {'term1': {'work': 10, 'exam': 36}, 'term2': {'work': 10, 'exam': 34}},
            'art': {'term1': {'work': 18}, 'term2': {'work': 20}},
        },
        's2': {
            'arabic': {
                'term1': {'work': 5, 'exam': 10},
                'term2': {'work': 5, 'exam': 12},
                'secondRole': {'exam': 30},
            },
        },
        's3': {
            'arabic': {'term1': {'work': 8, 'exam': 16}, 'term2': {'work': 8, 'exam': 16}},
        },
    },
    'config': {'minPassingPercent': 50, 'minExamPassingPercent': 30, 'useScaledScore': True},
    'descriptors': [
        {'id': 'd3', 'label': 'Pass', 'minPercent': 50, 'color': '#ca8a04'},
        {'id': 'd1', 'label': 'Excellent', 'minPercent': 85, 'color': '#16a34a'},
        {'id': 'd2', 'label': 'Good', 'minPercent': 65, 'color': '#2563eb'},
    ],
    'gradeGroups': [{'id': 'g1', 'name': 'Lower primary', 'grades': ['p1', 'p2', 'p3']}],
}


class MarkTest(TestCase):
    """Tests for the score/absent/not-entered variant."""

    def test_absence_sentinel(self):
        """Test -1 is an absence, not a score."""
        mark = Mark.from_raw(-1)
        self.assertTrue(mark.is_absent)
        self.assertTrue(mark.is_entered)
        self.assertEqual(mark.points, 0)

    def test_not_entered(self):
        """Test blanks are not entered and not absent."""
        for raw in (None, ''):
            mark = Mark.from_raw(raw)
            self.assertFalse(mark.is_absent)
            self.assertFalse(mark.is_entered)
            self.assertEqual(mark.points, 0)

    def test_score(self):
        mark = Mark.from_raw('12.5')
        self.assertEqual(mark.points, Decimal('12.5'))
        self.assertEqual(mark.to_raw(), 12.5)

    def test_negative_score_invalid(self):
        """Test negative values other than the sentinel are rejected."""
        with self.assertRaises(ValueError):
            Mark.from_raw(-3)

    def test_term_total_skips_absence(self):
        """Test the absence sentinel is never summed."""
        self.assertEqual(term(10, -1, 5).total, Decimal('15'))


class SubjectCatalogTest(TestCase):
    """Tests for subjects and the catalog."""

    def test_component_maxima_must_add_up(self):
        with self.assertRaises(ValueError):
            make_subject(max_score=50, work=10, exam=30)

    def test_catalog_for_grade(self):
        math = make_subject('math', grade_levels=('m1', 'm2'))
        science = make_subject('science', grade_levels=('m2',), is_basic=False)
        catalog = SubjectCatalog([math, science])

        self.assertEqual(catalog.for_grade(GradeLevel.M1), (math,))
        self.assertEqual(catalog.for_grade(GradeLevel.M2), (math, science))
        self.assertEqual(catalog.basic_for_grade(GradeLevel.M2), (math,))
        self.assertEqual(catalog.get('science'), science)
        self.assertIsNone(catalog.get('missing'))

    def test_duplicate_subject_ids_invalid(self):
        with self.assertRaises(ValueError):
            SubjectCatalog([make_subject('math'), make_subject('math')])

    def test_levels_for_stage(self):
        self.assertEqual(Subject.levels_for_stage('preparatory'), (GradeLevel.M1, GradeLevel.M2, GradeLevel.M3))
        self.assertEqual(len(Subject.levels_for_stage('all')), 9)


class PolicyConfigTest(TestCase):
    """Tests for the pass/fail policy."""

    def test_defaults_from_settings(self):
        policy = PolicyConfig.from_settings()
        self.assertEqual(policy.min_passing_percent, Decimal('50'))
        self.assertEqual(policy.min_exam_passing_percent, Decimal('30'))
        self.assertTrue(policy.is_remedial(GradeLevel.P1))
        self.assertTrue(policy.is_remedial(GradeLevel.P2))
        self.assertFalse(policy.is_remedial(GradeLevel.P3))

    @override_settings(EXAMCONTROL_REMEDIAL_GRADE_LEVELS=('p1',))
    def test_remedial_grades_from_settings(self):
        policy = PolicyConfig.from_settings()
        self.assertFalse(policy.is_remedial(GradeLevel.P2))

    def test_percent_out_of_range_invalid(self):
        with self.assertRaises(ValueError):
            PolicyConfig(min_passing_percent=120)
        with self.assertRaises(ValueError):
            PolicyConfig(min_exam_passing_percent=-1)

    def test_descriptor_lookup(self):
        """Test the highest band whose minimum is at or below the percentage wins."""
        policy = PolicyConfig(descriptors=(
            GradeDescriptor('Excellent', 85),
            GradeDescriptor('Pass', 50),
            GradeDescriptor('Good', 65),
        ))
        self.assertEqual(policy.descriptor_for(90).label, 'Excellent')
        self.assertEqual(policy.descriptor_for(85).label, 'Excellent')
        self.assertEqual(policy.descriptor_for(65).label, 'Good')
        self.assertEqual(policy.descriptor_for(Decimal('64.9')).label, 'Pass')
        self.assertEqual(policy.descriptor_for(10).label, 'Below standard')


class ResultEngineTest(TestCase):
    """Tests for pass/fail/remedial determination."""

    def setUp(self):
        self.policy = PolicyConfig()
        self.student = Student(id='s1', grade_level=GradeLevel.M1, gender=Gender.MALE)
        self.arabic = make_subject('arabic', max_score=100, work=30, exam=70, min_score=50)

    def test_written_exam_floor_checked_before_average(self):
        """Scenario A: term2 exam 18 < 21 fails on the written-exam floor."""
        records = {'arabic': record(term1=(20, 40), term2=(20, 18))}
        result = evaluate(self.student, [self.arabic], records, self.policy, ReportMode.ANNUAL)

        self.assertEqual(result.total_score, Decimal('49'))
        self.assertEqual(result.failure_reasons['Arabic'], FailureReason.WRITTEN_EXAM_FLOOR)
        self.assertEqual(result.failed_subjects[0], 'Arabic')
        self.assertEqual(result.status, ResultStatus.FAIL)

    def test_absence_in_either_term(self):
        """Scenario B: one absent written exam is enough."""
        records = {'arabic': record(term1=(20, 20), term2=(20, -1))}
        result = evaluate(self.student, [self.arabic], records, self.policy, ReportMode.ANNUAL)
        self.assertEqual(result.failure_reasons['Arabic'], FailureReason.ABSENCE)

    def test_remedial_grade(self):
        """Scenario C: a first-primary average of 24 out of 50 is Remedial."""
        student = Student(id='p', grade_level=GradeLevel.P1)
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(8, 16), term2=(8, 16))}
        result = evaluate(student, [subject], records, self.policy, ReportMode.ANNUAL)

        self.assertEqual(result.status, ResultStatus.REMEDIAL)
        self.assertEqual(result.failure_reasons, {'Arabic': FailureReason.BELOW_REMEDIAL_THRESHOLD})
        self.assertNotIn(OVERALL_TOTAL, result.failed_subjects)

    def test_overall_floor(self):
        """Scenario D: every subject passes but the overall percentage is 48."""
        math = make_subject('math', max_score=100, work=30, exam=70)
        art = make_subject('art', max_score=100, work=30, exam=70, is_basic=False)
        records = {'math': record(term1=(20, 30)), 'art': record(term1=(16, 30))}
        result = evaluate(self.student, [math, art], records, self.policy, ReportMode.TERM1)

        self.assertEqual(result.percent, Decimal('48'))
        self.assertEqual(result.failed_subjects, (OVERALL_TOTAL,))
        self.assertEqual(result.failure_reasons[OVERALL_TOTAL], FailureReason.BELOW_OVERALL_FLOOR)
        self.assertEqual(result.status, ResultStatus.FAIL)

    def test_second_round_pass(self):
        """Scenario E: a resit of 30 out of 50 clears the only failing subject."""
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(5, 10), term2=(5, 12), second=30)}

        annual = evaluate(self.student, [subject], records, self.policy, ReportMode.ANNUAL)
        self.assertEqual(annual.failure_reasons['Arabic'], FailureReason.BELOW_ANNUAL_AVERAGE)

        combined = evaluate(self.student, [subject], records, self.policy, ReportMode.COMBINED)
        self.assertEqual(combined.status, ResultStatus.PASS)
        self.assertEqual(combined.failed_subjects, ())
        outcome = combined.outcome_for('arabic')
        self.assertEqual(outcome.exam_round, ExamRound.SECOND)
        self.assertEqual(outcome.score, Decimal('25'))

    def test_second_round_excused_keeps_raw_score(self):
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(5, 10), term2=(5, 12), second=30, excused=True)}
        combined = evaluate(self.student, [subject], records, self.policy, ReportMode.COMBINED)
        self.assertEqual(combined.outcome_for('arabic').score, Decimal('30'))

    def test_second_round_absence_is_terminal(self):
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(5, 10), term2=(5, 12), second=-1)}
        combined = evaluate(self.student, [subject], records, self.policy, ReportMode.COMBINED)

        self.assertEqual(combined.status, ResultStatus.FAIL)
        self.assertEqual(combined.failure_reasons['Arabic'], FailureReason.SECOND_ROUND_ABSENCE)

    def test_second_round_missing_or_low(self):
        subject = make_subject('arabic', max_score=50)
        missing = {'arabic': record(term1=(5, 10), term2=(5, 12))}
        low = {'arabic': record(term1=(5, 10), term2=(5, 12), second=20)}

        result = evaluate(self.student, [subject], missing, self.policy, ReportMode.COMBINED)
        self.assertEqual(result.failure_reasons['Arabic'], FailureReason.SECOND_ROUND_MISSING)

        result = evaluate(self.student, [subject], low, self.policy, ReportMode.COMBINED)
        self.assertEqual(result.failure_reasons['Arabic'], FailureReason.BELOW_SECOND_ROUND_THRESHOLD)

    def test_combined_keeps_first_round_pass(self):
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(10, 30), term2=(10, 30))}
        result = evaluate(self.student, [subject], records, self.policy, ReportMode.COMBINED)

        self.assertEqual(result.status, ResultStatus.PASS)
        self.assertEqual(result.mode, ReportMode.COMBINED)
        self.assertEqual(result.outcome_for('arabic').exam_round, ExamRound.FIRST)

    def test_combined_overall_floor_failure_has_no_resit(self):
        """Test a student failed only on the overall percentage stays failed in combined mode."""
        art = make_subject('art', max_score=100, work=30, exam=70, is_basic=False)
        records = {'arabic': record(term1=(20, 35), term2=(20, 35))}

        annual = evaluate(self.student, [self.arabic, art], records, self.policy, ReportMode.ANNUAL)
        self.assertEqual(annual.failed_subjects, (OVERALL_TOTAL,))

        combined = evaluate(self.student, [self.arabic, art], records, self.policy, ReportMode.COMBINED)
        self.assertEqual(combined.status, ResultStatus.FAIL)
        self.assertEqual(combined.mode, ReportMode.COMBINED)
        self.assertEqual(combined.failed_subjects, (OVERALL_TOTAL,))
        self.assertEqual(combined.percent, Decimal('27.5'))
        self.assertEqual(combined.outcome_for('arabic').exam_round, ExamRound.FIRST)

    def test_failure_reasons_are_read_only(self):
        records = {'arabic': record(term1=(20, 40), term2=(20, 18))}
        result = evaluate(self.student, [self.arabic], records, self.policy, ReportMode.ANNUAL)
        with self.assertRaises(TypeError):
            result.failure_reasons['Arabic'] = FailureReason.ABSENCE
        self.assertEqual(result.to_dict()['failure_reasons'], {'Arabic': FailureReason.WRITTEN_EXAM_FLOOR})

    def test_non_basic_subject_never_blocks(self):
        art = make_subject('art', max_score=20, work=20, exam=0, is_basic=False, is_added_to_total=False)
        math = make_subject('math', max_score=50)
        records = {'math': record(term1=(10, 30)), 'art': record(term1=(2,))}
        result = evaluate(self.student, [math, art], records, self.policy, ReportMode.TERM1)

        self.assertFalse(result.outcome_for('art').passed)
        self.assertNotIn('Art', result.failed_subjects)
        self.assertEqual(result.status, ResultStatus.PASS)

    def test_remedial_grades_skip_written_exam_floor(self):
        """Test a zero written exam does not fail a remedial grade on its own."""
        student = Student(id='p', grade_level=GradeLevel.P2)
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term1=(10, 30), term2=(10, 0))}
        for mode in (ReportMode.TERM2, ReportMode.ANNUAL):
            result = evaluate(student, [subject], records, self.policy, mode)
            self.assertNotIn(FailureReason.WRITTEN_EXAM_FLOOR, result.failure_reasons.values())
        self.assertEqual(
            evaluate(student, [subject], records, self.policy, ReportMode.ANNUAL).status,
            ResultStatus.PASS,
        )

    def test_single_term_absent_differs_from_not_entered(self):
        subject = make_subject('arabic', max_score=50)
        absent = evaluate(self.student, [subject], {'arabic': record(term1=(10, -1))}, self.policy, ReportMode.TERM1)
        blank = evaluate(self.student, [subject], {'arabic': record(term1=(10,))}, self.policy, ReportMode.TERM1)

        self.assertEqual(absent.failure_reasons['Arabic'], FailureReason.ABSENCE)
        self.assertEqual(blank.failure_reasons['Arabic'], FailureReason.WRITTEN_EXAM_FLOOR)

    def test_single_term_passing_floor(self):
        subject = make_subject('arabic', max_score=50)
        records = {'arabic': record(term2=(5, 15))}
        result = evaluate(self.student, [subject], records, self.policy, ReportMode.TERM2)
        self.assertEqual(result.failure_reasons['Arabic'], FailureReason.BELOW_PASSING_FLOOR)

    def test_subject_without_written_exam_ignores_absence(self):
        activity = make_subject('activity', max_score=20, work=20, exam=0)
        records = {'activity': record(term1=(15, -1), term2=(15, -1))}
        result = evaluate(self.student, [activity], records, self.policy, ReportMode.ANNUAL)
        self.assertEqual(result.status, ResultStatus.PASS)

    def test_no_applicable_subjects(self):
        """Test an empty catalog yields a zero percentage and a pass."""
        result = evaluate(self.student, [], {}, self.policy, ReportMode.ANNUAL)
        self.assertEqual(result.percent, 0)
        self.assertEqual(result.status, ResultStatus.PASS)

    def test_status_pass_iff_no_failures(self):
        subject = make_subject('arabic', max_score=50)
        samples = [
            record(term1=(10, 30), term2=(10, 30)),
            record(term1=(5, 10), term2=(5, 12)),
            record(term1=(10, 30), term2=(10, -1)),
            record(),
        ]
        for level in (GradeLevel.P1, GradeLevel.M1):
            student = Student(id='x', grade_level=level)
            for sample in samples:
                for mode in ReportMode:
                    result = evaluate(student, [subject], {'arabic': sample}, self.policy, mode)
                    self.assertEqual(result.status == ResultStatus.PASS, not result.failed_subjects)

    def test_evaluate_is_idempotent(self):
        records = {'arabic': record(term1=(20, 40), term2=(20, 18))}
        first = evaluate(self.student, [self.arabic], records, self.policy, ReportMode.ANNUAL)
        second = evaluate(self.student, [self.arabic], records, self.policy, ReportMode.ANNUAL)
        self.assertEqual(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_subject_outside_grade_is_skipped(self):
        subject = make_subject('arabic', max_score=50, grade_levels=('m2',))
        result = evaluate(self.student, [subject], {}, self.policy, ReportMode.ANNUAL)
        self.assertEqual(result.subjects, ())

    def test_evaluate_cohort(self):
        students = [self.student, Student(id='s2', grade_level=GradeLevel.M1)]
        records = {'s1': {'arabic': record(term1=(30, 60), term2=(30, 60))}}
        results = evaluate_cohort(students, [self.arabic], records, self.policy, ReportMode.ANNUAL)

        self.assertEqual(set(results), {'s1', 's2'})
        self.assertTrue(results['s1'].passed)
        self.assertFalse(results['s2'].passed)


class RankingTest(TestCase):
    """Tests for dense ranking."""

    def result(self, student_id, percent, status=ResultStatus.PASS):
        return ResultRecord(student_id=student_id, mode=ReportMode.ANNUAL, status=status, percent=Decimal(percent))

    def test_dense_ranking(self):
        results = [self.result('a', 90), self.result('b', 85), self.result('c', 90)]
        ranked = rank(results)
        self.assertEqual([r.rank for r in ranked], [1, 1, 2])
        self.assertEqual([r.student_id for r in ranked], ['a', 'c', 'b'])

    def test_only_passing_students_ranked(self):
        results = {
            'a': self.result('a', 95, ResultStatus.FAIL),
            'b': self.result('b', 70),
        }
        ranked = rank(results)
        self.assertEqual([(r.student_id, r.rank) for r in ranked], [('b', 1)])

    def test_top_students(self):
        results = [self.result(str(i), 50 + i) for i in range(20)]
        top = top_students(results, 3)
        self.assertEqual([r.student_id for r in top], ['19', '18', '17'])
        self.assertEqual(top_students(results, 0), [])


class ScalingTest(TestCase):
    """Tests for certificate scaling."""

    def test_scale_to_certificate_max(self):
        self.assertEqual(scale_score(37, 50, 100), 74.0)
        self.assertEqual(scale_score(Decimal('33.35'), 50, 50), 33.4)

    def test_no_scaling_when_disabled_or_missing(self):
        self.assertEqual(scale_score(Decimal('12.25'), 50, 100, enabled=False), 12.3)
        self.assertEqual(scale_score(Decimal('24.5'), 50, 0), 24.5)
        self.assertEqual(scale_score(Decimal('24.5'), 50, None), 24.5)

    def test_scaling_to_own_maximum_is_rounding(self):
        for raw in ('0', '12.34', '12.35', '49.96', '50'):
            self.assertEqual(scale_score(Decimal(raw), 50, 50), scale_score(Decimal(raw), 50))

    def test_displayed_min_score(self):
        subject = make_subject('arabic', max_score=50, min_score=25, certificate_max=100)
        self.assertEqual(displayed_min_score(subject), Decimal('50'))
        self.assertEqual(displayed_min_score(subject, enabled=False), Decimal('25'))

    def test_certificate_does_not_change_status(self):
        subject = make_subject('arabic', max_score=50, certificate_max=100)
        policy = PolicyConfig(use_scaled_score=True, descriptors=(GradeDescriptor('Good', 65, '#2563eb'),))
        student = Student(id='s1', grade_level=GradeLevel.M1)
        result = evaluate(student, [subject], {'arabic': record(term1=(10, 25))}, policy, ReportMode.TERM1)
        certificate = certificate_for(result, [subject], policy, rank=2)

        self.assertEqual(certificate.status, result.status)
        self.assertEqual(certificate.lines[0].score, 70.0)
        self.assertEqual(certificate.lines[0].max_score, Decimal('100'))
        self.assertEqual(certificate.percent, 70.0)
        self.assertEqual(certificate.grade_label, 'Good')
        self.assertEqual(certificate.rank, 2)


class AggregateStatsTest(TestCase):
    """Tests for cohort statistics."""

    def setUp(self):
        self.policy = PolicyConfig()
        self.subject = make_subject('math', max_score=50)
        self.students = [
            Student(id='s1', grade_level=GradeLevel.M1, gender=Gender.MALE),
            Student(id='s2', grade_level=GradeLevel.M1, gender=Gender.FEMALE),
            Student(id='s3', grade_level=GradeLevel.M1, gender=Gender.MALE),
            Student(id='s4', grade_level=GradeLevel.M1),
            Student(id='s5', grade_level=GradeLevel.M2, gender=Gender.FEMALE),
        ]
        self.records = {
            's1': {'math': record(term1=(10, 30), term2=(10, 30))},
            's2': {'math': record(term1=(5, 10), term2=(5, 12), second=30)},
            's3': {'math': record(term1=(10, 30), term2=(10, -1))},
            's4': {'math': record(term1=(10, 30), term2=(10, 30))},
        }

    def aggregate(self, groups=None, **kwargs):
        groups = groups or grade_groups([GradeLevel.M1])
        return aggregate(self.students, [self.subject], self.records, self.policy, groups, **kwargs)

    def test_annual_counts_by_gender(self):
        row, = self.aggregate()

        self.assertEqual(row.registered.to_dict(), {'male': 2, 'female': 1, 'total': 4})
        self.assertEqual(row.absent.to_dict(), {'male': 1, 'female': 0, 'total': 1})
        self.assertEqual(row.present.total, 3)
        self.assertEqual(row.passed.to_dict(), {'male': 1, 'female': 0, 'total': 2})
        self.assertEqual(row.failed.to_dict(), {'male': 0, 'female': 1, 'total': 1})
        self.assertEqual(row.not_passed.total, 2)
        self.assertAlmostEqual(float(row.percent), 66.67, places=2)

    def test_each_student_counted_once(self):
        row, = self.aggregate()
        self.assertEqual(row.absent.total + row.passed.total + row.failed.total, row.registered.total)

    def test_term1_window_ignores_term2_absence(self):
        row, = self.aggregate(mode=ReportMode.TERM1)
        self.assertEqual(row.absent.total, 0)
        self.assertEqual(row.passed.total, 3)

    def test_combined_population(self):
        """Test only annual failures count; no resit sat means absent."""
        row, = self.aggregate(mode=ReportMode.COMBINED)

        self.assertEqual(row.registered.total, 2)
        self.assertEqual(row.absent.total, 1)
        self.assertEqual(row.passed.to_dict(), {'male': 0, 'female': 1, 'total': 1})
        self.assertEqual(row.percent, 100)

    def test_combined_statistics_agree_with_results(self):
        """Test combined statistics classify each student the way the combined result does."""
        art = make_subject('art', max_score=50, is_basic=False)
        subjects = [self.subject, art]
        samples = {
            'overall': {'math': record(term1=(10, 20), term2=(10, 20))},
            'resit': self.records['s2'],
            'low_resit': {'math': record(term1=(5, 10), term2=(5, 12), second=20)},
        }
        for student_id, records in samples.items():
            with self.subTest(student_id):
                student = Student(id=student_id, grade_level=GradeLevel.M1)
                result = evaluate(student, subjects, records, self.policy, ReportMode.COMBINED)
                row, = aggregate(
                    [student], subjects, {student_id: records}, self.policy,
                    grade_groups([GradeLevel.M1]), mode=ReportMode.COMBINED,
                )
                self.assertEqual(row.registered.total, 1)
                self.assertEqual(row.absent.total, 0)
                self.assertEqual(row.passed.total, int(result.passed))
                self.assertEqual(row.failed.total, int(not result.passed))

    def test_combined_overall_floor_failure_counted_as_failed(self):
        art = make_subject('art', max_score=50, is_basic=False)
        student = Student(id='x', grade_level=GradeLevel.M1, gender=Gender.MALE)
        records = {'x': {'math': record(term1=(10, 20), term2=(10, 20))}}
        row, = aggregate(
            [student], [self.subject, art], records, self.policy,
            grade_groups([GradeLevel.M1]), mode=ReportMode.COMBINED,
        )

        self.assertEqual(row.present.total, 1)
        self.assertEqual(row.failed.to_dict(), {'male': 1, 'female': 0, 'total': 1})
        self.assertEqual(row.passed.total, 0)

    def test_high_achievers(self):
        row, = self.aggregate(passed=high_achievers(85))
        self.assertEqual(row.passed.total, 0)
        self.assertEqual(row.failed.total, 3)

    def test_empty_group(self):
        row, = self.aggregate(groups=grade_groups([GradeLevel.M3]))
        self.assertEqual(row.registered.total, 0)
        self.assertEqual(row.percent, 0)

    def test_stage_group_and_totals(self):
        rows = self.aggregate(groups=grade_groups([GradeLevel.M1, GradeLevel.M2]))
        stage, = self.aggregate(groups=[stage_group('preparatory')])
        total = totals(rows)

        self.assertEqual(stage.registered.total, 5)
        self.assertEqual(total.registered.to_dict(), stage.registered.to_dict())
        self.assertEqual(total.failed.total, stage.failed.total)
        self.assertEqual(total.grade_levels, (GradeLevel.M1, GradeLevel.M2))

    def test_subject_statistics(self):
        rows = subject_statistics(self.students, [self.subject], self.records, self.policy)
        by_grade = {row.grade_level: row for row in rows}

        self.assertEqual(by_grade[GradeLevel.M1].sat, 4)
        self.assertEqual(by_grade[GradeLevel.M1].failed, 2)
        self.assertEqual(by_grade[GradeLevel.M1].percent, 50)
        self.assertEqual(by_grade[GradeLevel.M2].failed, 1)

    def test_subject_statistics_accepts_generator(self):
        students = (student for student in self.students)
        rows = subject_statistics(students, [self.subject], self.records, self.policy)
        self.assertEqual([row.grade_level for row in rows], [GradeLevel.M1, GradeLevel.M2])
        self.assertEqual([row.sat for row in rows], [4, 1])


class WorkbookTest(TestCase):
    """Tests for workbook parsing."""

    def test_load_workbook(self):
        workbook = load_workbook(WORKBOOK)

        self.assertEqual(len(workbook.students), 3)
        self.assertEqual(workbook.student('s1').gender, Gender.MALE)
        self.assertEqual(workbook.student('s2').gender, Gender.FEMALE)
        self.assertEqual(len(workbook.catalog.for_grade(GradeLevel.M3)), 1)
        self.assertTrue(workbook.policy.use_scaled_score)
        self.assertEqual([d.label for d in workbook.policy.descriptors], ['Pass', 'Good', 'Excellent'])
        self.assertEqual(workbook.groups[0].grade_levels, (GradeLevel.P1, GradeLevel.P2, GradeLevel.P3))
        self.assertTrue(workbook.grade_records['s2']['arabic'].second_round.exam.is_entered)

    def test_stage_fallback(self):
        data = dict(WORKBOOK, subjects=[{
            'id': 'science', 'name': 'Science', 'maxScore': 50, 'yearWork': 10,
            'examScore': 40, 'stage': 'preparatory',
        }])
        workbook = load_workbook(data)
        science = workbook.catalog.get('science')
        self.assertEqual(science.grade_levels, (GradeLevel.M1, GradeLevel.M2, GradeLevel.M3))

    def test_digest_ignores_key_order(self):
        reordered = json.loads(json.dumps(WORKBOOK))
        reordered = dict(reversed(list(reordered.items())))
        self.assertEqual(workbook_digest(reordered), workbook_digest(WORKBOOK))
        self.assertEqual(load_workbook(WORKBOOK).digest, workbook_digest(WORKBOOK))

    def test_invalid_subject(self):
        data = dict(WORKBOOK, subjects=[{'id': 'math', 'name': 'Math', 'maxScore': 50, 'yearWork': 10, 'examScore': 30}])
        with self.assertRaisesMessage(WorkbookError, 'Subject math'):
            load_workbook(data)

    def test_invalid_grade_level(self):
        data = dict(WORKBOOK, students=[{'id': 'x', 'gradeLevel': 'x9'}])
        with self.assertRaisesMessage(WorkbookError, 'Student x'):
            load_workbook(data)

    def test_negative_score(self):
        data = dict(WORKBOOK, grades={'s1': {'arabic': {'term1': {'exam': -5}}}})
        with self.assertRaisesMessage(WorkbookError, 'student s1, subject arabic'):
            load_workbook(data)

    def test_duplicate_student(self):
        data = dict(WORKBOOK, students=WORKBOOK['students'] + [WORKBOOK['students'][0]])
        with self.assertRaisesMessage(WorkbookError, 'Duplicate student id: s1'):
            load_workbook(data)

    def test_invalid_config(self):
        data = dict(WORKBOOK, config={'minPassingPercent': 150})
        with self.assertRaises(WorkbookError):
            load_workbook(data)

    def test_not_an_object(self):
        with self.assertRaises(WorkbookError):
            load_workbook([])

    def test_merge_grades(self):
        merged = merge_grades(WORKBOOK, {'s3': {'arabic': {'term2': {'work': 10, 'exam': 30}}}})
        self.assertEqual(merged['grades']['s3']['arabic']['term2'], {'work': 10, 'exam': 30})
        self.assertEqual(merged['grades']['s3']['arabic']['term1'], {'work': 8, 'exam': 16})
        self.assertEqual(WORKBOOK['grades']['s3']['arabic']['term2'], {'work': 8, 'exam': 16})


class SheetTest(TestCase):
    """Tests for spreadsheet import."""

    def upload(self, name, text):
        directory = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, directory)
        path = os.path.join(directory, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path

    def test_read_grade_sheet(self):
        sheet = self.upload('grades.csv', (
            'Student ID,Subject ID,Term,Work,Practical,Exam\n'
            's1,arabic,term1,10,,30\n'
            's1,arabic,term2,10,,غ\n'
            's1,arabic,second_round,,,28\n'
        ))
        grades = read_grade_sheet(sheet)
        arabic = grades['s1']['arabic']

        self.assertEqual(arabic['term1'], {'work': 10, 'practical': None, 'exam': 30})
        self.assertEqual(arabic['term2']['exam'], -1)
        self.assertEqual(arabic['secondRole'], {'exam': 28, 'isExcused': False})

        record = GradeRecord.from_raw(arabic)
        self.assertTrue(record.term2.exam.is_absent)
        self.assertFalse(record.term1.practical.is_entered)

    def test_decimal_absence_sentinel(self):
        sheet = self.upload('grades.csv', (
            'student_id,subject_id,term,work,practical,exam\n'
            's1,arabic,term1,10,,-1.0\n'
        ))
        grades = read_grade_sheet(sheet)
        self.assertEqual(grades['s1']['arabic']['term1']['exam'], -1)

    def test_negative_score_invalid(self):
        sheet = self.upload('grades.csv', (
            'student_id,subject_id,term,work,practical,exam\n'
            's1,arabic,term1,10,,-2\n'
        ))
        with self.assertRaisesMessage(SheetError, 'cannot be negative'):
            read_grade_sheet(sheet)

    def test_unsupported_file_type(self):
        with self.assertRaises(SheetError):
            read_grade_sheet(self.upload('grades.txt', 'student_id\n'))

    def test_missing_columns(self):
        with self.assertRaisesMessage(SheetError, 'missing columns: term'):
            read_grade_sheet(self.upload('grades.csv', 'student_id,subject_id,work,practical,exam\ns1,a,1,2,3\n'))

    def test_invalid_score(self):
        sheet = self.upload('grades.csv', (
            'student_id,subject_id,term,work,practical,exam\n'
            's1,arabic,term1,ten,,30\n'
        ))
        with self.assertRaisesMessage(SheetError, 'Row 2'):
            read_grade_sheet(sheet)

    def test_unknown_term(self):
        sheet = self.upload('grades.csv', (
            'student_id,subject_id,term,work,practical,exam\n'
            's1,arabic,term3,1,,30\n'
        ))
        with self.assertRaisesMessage(SheetError, 'unknown term'):
            read_grade_sheet(sheet)

    def test_read_student_roster(self):
        roster = self.upload('students.csv', (
            'id,name,grade_level,gender,classroom,seating_number\n'
            '7,Omar,M1,ذكر,1/1,1001\n'
        ))
        students = read_student_roster(roster)
        self.assertEqual(students, [{
            'id': '7', 'name': 'Omar', 'gradeLevel': 'm1', 'gender': 'ذكر',
            'classroom': '1/1', 'seatingNumber': 1001,
        }])

        workbook = load_workbook(dict(WORKBOOK, students=students))
        self.assertEqual(workbook.student('7').gender, Gender.MALE)


class ReportOptionsFormTest(TestCase):
    """Tests for report option validation."""

    def test_defaults(self):
        form = ReportOptionsForm({})
        self.assertTrue(form.is_valid())
        self.assertEqual(form.cleaned_data['mode'], ReportMode.ANNUAL)
        self.assertIsNone(form.cleaned_data['grade'])
        self.assertEqual(form.cleaned_data['scope'], 'per_grade')

    def test_invalid_mode(self):
        form = ReportOptionsForm({'mode': 'term3'})
        self.assertFalse(form.is_valid())
        self.assertIn('mode', form.errors)

    def test_high_achievers_flag_uses_configured_percent(self):
        form = ReportOptionsForm({'high_achievers': 'true'})
        self.assertTrue(form.is_valid())
        self.assertEqual(form.cleaned_data['high_achiever_percent'], Decimal('65'))

    def test_percent_out_of_range_invalid(self):
        form = ReportOptionsForm({'high_achiever_percent': '120'})
        self.assertFalse(form.is_valid())


class ServicesTest(TestCase):
    """Tests for the cached report services."""

    def setUp(self):
        cache.clear()
        self.workbook = load_workbook(WORKBOOK)

    def test_results_are_cached(self):
        with mock.patch('examcontrol.services.evaluate_cohort', wraps=evaluate_cohort) as evaluated:
            first = services.results_report(self.workbook, ReportMode.ANNUAL)
            second = services.results_report(load_workbook(WORKBOOK), ReportMode.ANNUAL)
            services.results_report(self.workbook, ReportMode.TERM1)

        self.assertEqual(first, second)
        self.assertEqual(evaluated.call_count, 2)

    def test_changed_workbook_is_recomputed(self):
        services.results_report(self.workbook, ReportMode.ANNUAL)
        changed = json.loads(json.dumps(WORKBOOK))
        changed['grades']['s2']['arabic']['term1'] = {'work': 10, 'exam': 36}
        changed['grades']['s2']['arabic']['term2'] = {'work': 10, 'exam': 36}

        payload = services.results_report(load_workbook(changed), ReportMode.ANNUAL)
        statuses = {r['student_id']: r['status'] for r in payload['results']}
        self.assertEqual(statuses['s2'], 'Pass')

    def test_certificates(self):
        payload = services.certificates_report(self.workbook, ReportMode.ANNUAL)
        by_student = {c['student_id']: c for c in payload['certificates']}

        omar = by_student['s1']
        self.assertEqual(omar['rank'], 1)
        self.assertEqual(omar['percent'], 90.0)
        self.assertEqual(omar['grade_label'], 'Excellent')
        arabic = omar['lines'][0]
        self.assertEqual((arabic['score'], arabic['max_score'], arabic['min_score']), (90.0, 100.0, 50.0))
        self.assertIsNone(by_student['s2']['rank'])

    def test_statistics_for_workbook_groups(self):
        payload = services.statistics_report(self.workbook, scope='groups')
        row, = payload['rows']
        self.assertEqual(row['label'], 'Lower primary')
        self.assertEqual(row['registered']['total'], 1)
        self.assertEqual(row['failed']['total'], 1)


@override_settings(RATELIMIT_ENABLE=False)
class EndpointTest(TestCase):
    """Tests for the JSON endpoints."""

    def setUp(self):
        cache.clear()

    def post(self, name, query='', body=None):
        url = reverse(f'examcontrol:{name}') + query
        data = json.dumps(WORKBOOK if body is None else body)
        return self.client.post(url, data=data, content_type='application/json')

    def test_results(self):
        response = self.post('results', '?mode=annual')
        self.assertEqual(response.status_code, 200)
        statuses = {r['student_id']: r['status'] for r in response.json()['results']}
        self.assertEqual(statuses, {'s1': 'Pass', 's2': 'Fail', 's3': 'Remedial'})

    def test_results_combined_for_grade(self):
        response = self.post('results', '?mode=combined&grade=m1')
        statuses = {r['student_id']: r['status'] for r in response.json()['results']}
        self.assertEqual(statuses, {'s1': 'Pass', 's2': 'Pass'})

    def test_ranking(self):
        response = self.post('ranking', '?top=0')
        self.assertEqual(response.status_code, 200)
        ranking = response.json()['ranking']
        self.assertEqual([(r['student_id'], r['rank']) for r in ranking], [('s1', 1)])

    def test_statistics(self):
        response = self.post('statistics', '?scope=stages')
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([row['registered']['total'] for row in data['rows']], [1, 2])
        self.assertEqual(data['total']['registered']['total'], 3)

    def test_subject_statistics(self):
        response = self.post('subject_statistics', '?grade=m1')
        self.assertEqual(response.status_code, 200)
        rows = response.json()['rows']
        self.assertEqual([(r['subject_id'], r['failed']) for r in rows], [('arabic', 1)])

    def test_certificates(self):
        response = self.post('certificates')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['certificates']), 3)

    def test_get_not_allowed(self):
        response = self.client.get(reverse('examcontrol:results'))
        self.assertEqual(response.status_code, 405)

    def test_invalid_json(self):
        response = self.client.post(
            reverse('examcontrol:results'), data='{not json', content_type='application/json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid JSON')

    def test_invalid_options(self):
        response = self.post('statistics', '?mode=term3')
        self.assertEqual(response.status_code, 400)
        self.assertIn('mode', response.json()['errors'])

    def test_invalid_workbook(self):
        response = self.post('results', body={'students': [{'id': 's1'}]})
        self.assertEqual(response.status_code, 400)
        self.assertIn('gradeLevel', response.json()['error'])


class EvaluateExamResultsCommandTest(TestCase):
    """Tests for the evaluate_exam_results management command."""

    def setUp(self):
        cache.clear()
        handle, self.path = tempfile.mkstemp(suffix='.json')
        with os.fdopen(handle, 'w', encoding='utf-8') as f:
            json.dump(WORKBOOK, f, ensure_ascii=False)

    def tearDown(self):
        os.remove(self.path)

    def run_command(self, *args):
        out = StringIO()
        call_command('evaluate_exam_results', self.path, *args, stdout=out)
        return out.getvalue()

    def test_results(self):
        output = self.run_command()
        self.assertIn('1 of 3 students passed (annual)', output)
        self.assertIn('below_annual_average', output)

    def test_ranking(self):
        output = self.run_command('--top', '5')
        self.assertIn('1. s1', output)

    def test_statistics(self):
        output = self.run_command('--stats', '--scope', 'stages')
        self.assertIn('Total', output)

    def test_json_output(self):
        payload = json.loads(self.run_command('--mode', 'combined', '--grade', 'm1', '--json'))
        self.assertEqual(payload['mode'], 'combined')
        self.assertEqual(len(payload['results']), 2)

    def test_missing_file(self):
        with self.assertRaises(CommandError):
            call_command('evaluate_exam_results', self.path + '.missing', stdout=StringIO())
