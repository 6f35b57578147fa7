"""
Result determination: decides pass, fail or remedial for one student.

The checks for a subject run in a fixed order and the first one that fails
gives the reason:

    remedial grade     -> below the remedial threshold (no written-exam gate)
    annual mode        -> absence, written-exam floor (term 2 only),
                          annual average below the passing floor
    single-term mode   -> absence, written-exam floor, below the passing floor

Only basic subjects can block promotion. After all subjects, non-remedial
students also need the overall percentage to reach the passing floor.
Combined mode re-checks failed basic subjects against second-round scores;
a student who failed on the overall percentage alone has nothing to resit
and keeps the first-round Fail.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from ..choices import ExamRound, FailureReason, ReportMode, ResultStatus
from .policy import HUNDRED
from .records import EMPTY_RECORD, ZERO

logger = logging.getLogger(__name__)

OVERALL_TOTAL = 'overall total'
TWO = Decimal('2')


@dataclass(frozen=True)
class SubjectOutcome:
    subject_id: str
    name: str
    score: Decimal
    max_score: Decimal
    passed: bool
    reason: Optional[str] = None
    is_basic: bool = True
    counted: bool = True
    exam_round: str = ExamRound.FIRST

    @property
    def blocks_promotion(self):
        return self.is_basic and not self.passed

    def to_dict(self):
        return {
            'subject_id': self.subject_id,
            'name': self.name,
            'score': float(self.score),
            'max_score': float(self.max_score),
            'passed': self.passed,
            'reason': self.reason,
            'is_basic': self.is_basic,
            'counted': self.counted,
            'round': self.exam_round,
        }


@dataclass(frozen=True)
class ResultRecord:
    student_id: str
    mode: str
    status: str
    failed_subjects: Tuple[str, ...] = ()
    failure_reasons: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    total_score: Decimal = ZERO
    max_total: Decimal = ZERO
    percent: Decimal = ZERO
    subjects: Tuple[SubjectOutcome, ...] = ()

    @property
    def passed(self):
        return self.status == ResultStatus.PASS

    def outcome_for(self, subject_id):
        for outcome in self.subjects:
            if outcome.subject_id == subject_id:
                return outcome
        return None

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'mode': self.mode,
            'status': self.status,
            'failed_subjects': list(self.failed_subjects),
            'failure_reasons': dict(self.failure_reasons),
            'total_score': float(self.total_score),
            'max_total': float(self.max_total),
            'percent': float(self.percent),
            'subjects': [outcome.to_dict() for outcome in self.subjects],
        }


def percentage(part, whole):
    """part / whole * 100, or 0 when whole is 0."""
    if not whole:
        return ZERO
    return Decimal(part) / Decimal(whole) * HUNDRED


def working_score(record, mode):
    """Score compared against thresholds: a term total or the annual average."""
    if mode == ReportMode.TERM1:
        return record.term1.total
    if mode == ReportMode.TERM2:
        return record.term2.total
    return (record.term1.total + record.term2.total) / TWO


def check_subject(subject, record, policy, grade_level, mode):
    """
    Run the subject checks in priority order.

    Args:
        subject: Subject being checked
        record: the student's GradeRecord for that subject
        policy: PolicyConfig
        grade_level: the student's GradeLevel
        mode: ReportMode.TERM1, TERM2 or ANNUAL

    Returns:
        tuple: (working score, failure reason or None)
    """
    score = working_score(record, mode)

    if policy.is_remedial(grade_level):
        if score < subject.max_score * policy.remedial_fraction:
            return score, FailureReason.BELOW_REMEDIAL_THRESHOLD
        return score, None

    if mode == ReportMode.ANNUAL:
        if subject.has_written_exam and (record.term1.exam.is_absent or record.term2.exam.is_absent):
            return score, FailureReason.ABSENCE
        # Only the second-term written paper is gated in the annual result.
        if record.term2.exam.points < policy.exam_fraction * subject.exam_max:
            return score, FailureReason.WRITTEN_EXAM_FLOOR
        if score < policy.pass_fraction * subject.max_score:
            return score, FailureReason.BELOW_ANNUAL_AVERAGE
        return score, None

    term = record.term1 if mode == ReportMode.TERM1 else record.term2
    if subject.has_written_exam and term.exam.is_absent:
        return score, FailureReason.ABSENCE
    if term.exam.points < policy.exam_fraction * subject.exam_max:
        return score, FailureReason.WRITTEN_EXAM_FLOOR
    if score < policy.pass_fraction * subject.max_score:
        return score, FailureReason.BELOW_PASSING_FLOOR
    return score, None


def _applicable(subjects, grade_level):
    return [s for s in subjects if s.applies_to(grade_level)]


def _first_round_outcomes(student, subjects, records, policy, mode):
    outcomes = []
    for subject in _applicable(subjects, student.grade_level):
        record = records.get(subject.id) or EMPTY_RECORD
        score, reason = check_subject(subject, record, policy, student.grade_level, mode)
        outcomes.append(SubjectOutcome(
            subject_id=subject.id,
            name=subject.name,
            score=score,
            max_score=subject.max_score,
            passed=reason is None,
            reason=reason,
            is_basic=subject.is_basic,
            counted=subject.is_added_to_total,
        ))
    return outcomes


def _build_result(student, mode, outcomes, policy, check_overall=True):
    total = sum((o.score for o in outcomes if o.counted), ZERO)
    max_total = sum((o.max_score for o in outcomes if o.counted), ZERO)
    percent = percentage(total, max_total)

    failed_subjects = []
    failure_reasons = {}
    for outcome in outcomes:
        if outcome.blocks_promotion:
            failed_subjects.append(outcome.name)
            failure_reasons[outcome.name] = outcome.reason

    remedial = policy.is_remedial(student.grade_level)
    # Nothing to judge when no subject counts toward the total.
    if check_overall and not remedial and max_total > 0 and percent < policy.min_passing_percent:
        failed_subjects.append(OVERALL_TOTAL)
        failure_reasons[OVERALL_TOTAL] = FailureReason.BELOW_OVERALL_FLOOR

    if not failed_subjects:
        status = ResultStatus.PASS
    elif remedial:
        status = ResultStatus.REMEDIAL
    else:
        status = ResultStatus.FAIL

    return ResultRecord(
        student_id=student.id,
        mode=mode,
        status=status,
        failed_subjects=tuple(failed_subjects),
        failure_reasons=MappingProxyType(failure_reasons),
        total_score=total,
        max_total=max_total,
        percent=percent,
        subjects=tuple(outcomes),
    )


def resit_outcome(subject, outcome, second_round, policy):
    """
    Re-check a first-round failure against its second-round score.

    A passed resit is credited at the subject's minimum score unless the
    second-round entry is excused, in which case the raw score stands.
    """
    if second_round is None or not second_round.exam.is_entered:
        return replace(outcome, reason=FailureReason.SECOND_ROUND_MISSING)

    if second_round.exam.is_absent:
        return replace(
            outcome,
            score=ZERO,
            reason=FailureReason.SECOND_ROUND_ABSENCE,
            exam_round=ExamRound.SECOND,
        )

    raw = second_round.exam.points
    if raw >= subject.max_score * policy.second_round_fraction:
        return replace(
            outcome,
            score=raw if second_round.is_excused else subject.min_score,
            passed=True,
            reason=None,
            exam_round=ExamRound.SECOND,
        )

    return replace(
        outcome,
        score=raw,
        reason=FailureReason.BELOW_SECOND_ROUND_THRESHOLD,
        exam_round=ExamRound.SECOND,
    )


def has_resits(result):
    """True when at least one basic subject failed and goes to the second round."""
    return any(outcome.blocks_promotion for outcome in result.subjects)


def _evaluate_combined(student, subjects, records, policy):
    first_round = evaluate(student, subjects, records, policy, ReportMode.ANNUAL)
    # Only failed basic subjects go to the second round; a student who failed
    # on the overall floor alone keeps the first-round result.
    if first_round.passed or not has_resits(first_round):
        return replace(first_round, mode=ReportMode.COMBINED)

    by_id = {s.id: s for s in _applicable(subjects, student.grade_level)}
    outcomes = []
    for outcome in first_round.subjects:
        if not outcome.blocks_promotion:
            outcomes.append(outcome)
            continue
        record = records.get(outcome.subject_id) or EMPTY_RECORD
        outcomes.append(resit_outcome(by_id[outcome.subject_id], outcome, record.second_round, policy))

    # The overall floor belongs to the first round; resits are judged per subject.
    return _build_result(student, ReportMode.COMBINED, outcomes, policy, check_overall=False)


def evaluate(student, subjects, records, policy, mode):
    """
    Evaluate one student.

    Args:
        student: Student
        subjects: iterable of Subject (catalog); filtered by grade level here
        records: mapping subject_id -> GradeRecord for this student
        policy: PolicyConfig
        mode: ReportMode

    Returns:
        ResultRecord: a fresh record; inputs are never modified
    """
    mode = ReportMode(mode)
    records = records or {}
    if mode == ReportMode.COMBINED:
        return _evaluate_combined(student, subjects, records, policy)
    outcomes = _first_round_outcomes(student, subjects, records, policy, mode)
    return _build_result(student, mode, outcomes, policy)


def evaluate_cohort(students, subjects, grade_records, policy, mode):
    """Evaluate every student; returns {student_id: ResultRecord}."""
    subjects = tuple(subjects)
    results = {}
    for student in students:
        results[student.id] = evaluate(
            student, subjects, grade_records.get(student.id, {}), policy, mode
        )

    failed = sum(1 for r in results.values() if not r.passed)
    logger.debug(f'Evaluated {len(results)} students in {mode} mode: {failed} not passing')
    return results
