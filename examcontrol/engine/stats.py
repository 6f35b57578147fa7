"""
Cohort statistics.

Every statistical table of the exam-control reports (general statistics,
half-year statistics, second-round statistics, high achievers, stage totals)
is one reduction over the students of a group of grade levels. ``aggregate``
is that reduction; the report variants differ only in the groups, the
reporting mode and the "passed" predicate passed to it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Tuple

from ..choices import Gender, GradeLevel, ReportMode, Stage
from .records import EMPTY_RECORD, to_decimal
from .results import evaluate, has_resits, percentage

logger = logging.getLogger(__name__)


@dataclass
class StatCell:
    male: int = 0
    female: int = 0
    total: int = 0

    def add(self, gender):
        self.total += 1
        if gender == Gender.MALE:
            self.male += 1
        elif gender == Gender.FEMALE:
            self.female += 1

    def merge(self, other):
        self.male += other.male
        self.female += other.female
        self.total += other.total

    def to_dict(self):
        return {'male': self.male, 'female': self.female, 'total': self.total}


@dataclass(frozen=True)
class CohortGroup:
    label: str
    grade_levels: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, 'grade_levels', tuple(GradeLevel(g) for g in self.grade_levels))


@dataclass
class CohortRow:
    label: str
    grade_levels: Tuple[str, ...] = ()
    registered: StatCell = field(default_factory=StatCell)
    present: StatCell = field(default_factory=StatCell)
    absent: StatCell = field(default_factory=StatCell)
    passed: StatCell = field(default_factory=StatCell)
    failed: StatCell = field(default_factory=StatCell)
    not_passed: StatCell = field(default_factory=StatCell)

    CELLS = ('registered', 'present', 'absent', 'passed', 'failed', 'not_passed')

    @property
    def percent(self):
        return percentage(self.passed.total, self.present.total)

    def to_dict(self):
        data = {'label': self.label, 'grade_levels': list(self.grade_levels)}
        for name in self.CELLS:
            data[name] = getattr(self, name).to_dict()
        data['percent'] = float(self.percent)
        return data


def grade_groups(grade_levels=None):
    """One group per grade level (all nine when none are given)."""
    levels = [GradeLevel(g) for g in (grade_levels or GradeLevel)]
    return [CohortGroup(str(level.label), (level,)) for level in levels]


def stage_group(stage):
    """A single group with every grade of a stage, e.g. all preparatory grades."""
    stage = Stage(stage)
    return CohortGroup(str(stage.label), GradeLevel.for_stage(stage))


def passed_status(result):
    return result.passed


def high_achievers(min_percent):
    """Predicate: overall percentage at or above ``min_percent``."""
    threshold = to_decimal(min_percent)

    def predicate(result):
        return result.percent >= threshold
    return predicate


def _exam_marks(record, mode):
    if mode == ReportMode.TERM1:
        return (record.term1.exam,)
    if mode == ReportMode.TERM2:
        return (record.term2.exam,)
    return (record.term1.exam, record.term2.exam)


def absent_for_window(student, subjects, records, mode):
    """
    True when any gated written exam in the window is marked absent.

    Subjects without a written exam do not count; a student with no gated
    subject at all is treated as present.
    """
    marks = []
    for subject in subjects:
        if subject.applies_to(student.grade_level) and subject.has_written_exam:
            record = records.get(subject.id) or EMPTY_RECORD
            marks.extend(_exam_marks(record, mode))
    return any(mark.is_absent for mark in marks)


def sat_second_round(first_round, records):
    """True when at least one failed subject has a second-round exam that was sat."""
    for outcome in first_round.subjects:
        if not outcome.blocks_promotion:
            continue
        second_round = (records.get(outcome.subject_id) or EMPTY_RECORD).second_round
        if second_round and second_round.exam.is_entered and not second_round.exam.is_absent:
            return True
    return False


def _classify(student, subjects, records, policy, mode, passed):
    """
    Returns 'absent', 'passed', 'failed', or None when the student is
    outside the mode's population (combined mode only covers first-round
    failures).
    """
    if mode == ReportMode.COMBINED:
        first_round = evaluate(student, subjects, records, policy, ReportMode.ANNUAL)
        if first_round.passed:
            return None
        # Overall-floor failures have no resit to sit and stay failed.
        if has_resits(first_round) and not sat_second_round(first_round, records):
            return 'absent'
        result = evaluate(student, subjects, records, policy, ReportMode.COMBINED)
    else:
        if absent_for_window(student, subjects, records, mode):
            return 'absent'
        result = evaluate(student, subjects, records, policy, mode)
    return 'passed' if passed(result) else 'failed'


def aggregate(students, subjects, grade_records, policy, groups, mode=ReportMode.ANNUAL, passed=None):
    """
    Reduce a cohort into one statistics row per group.

    Args:
        students: iterable of Student
        subjects: iterable of Subject
        grade_records: {student_id: {subject_id: GradeRecord}}
        policy: PolicyConfig
        groups: iterable of CohortGroup (see grade_groups / stage_group)
        mode: ReportMode; COMBINED counts only students who failed the annual round
        passed: predicate over ResultRecord, defaults to status == Pass

    Returns:
        list of CohortRow, in group order
    """
    mode = ReportMode(mode)
    passed = passed or passed_status
    subjects = tuple(subjects)
    students = tuple(students)

    rows = []
    for group in groups:
        row = CohortRow(label=group.label, grade_levels=group.grade_levels)
        for student in students:
            if student.grade_level not in group.grade_levels:
                continue
            records = grade_records.get(student.id, {})
            outcome = _classify(student, subjects, records, policy, mode, passed)
            if outcome is None:
                continue

            row.registered.add(student.gender)
            if outcome == 'absent':
                row.absent.add(student.gender)
                row.not_passed.add(student.gender)
                continue
            row.present.add(student.gender)
            if outcome == 'passed':
                row.passed.add(student.gender)
            else:
                row.failed.add(student.gender)
                row.not_passed.add(student.gender)
        rows.append(row)

    logger.debug(f'Aggregated {len(students)} students into {len(rows)} rows ({mode})')
    return rows


def totals(rows, label='Total'):
    """Grand-total row over a list of rows."""
    total = CohortRow(label=label)
    levels = []
    for row in rows:
        for name in CohortRow.CELLS:
            getattr(total, name).merge(getattr(row, name))
        levels.extend(level for level in row.grade_levels if level not in levels)
    total.grade_levels = tuple(levels)
    return total


@dataclass(frozen=True)
class SubjectStatRow:
    grade_level: str
    subject_id: str
    name: str
    sat: int
    passed: int
    failed: int

    @property
    def percent(self):
        return percentage(self.passed, self.sat)

    def to_dict(self):
        return {
            'grade_level': self.grade_level,
            'subject_id': self.subject_id,
            'name': self.name,
            'sat': self.sat,
            'passed': self.passed,
            'failed': self.failed,
            'percent': float(self.percent),
        }


def subject_statistics(students, subjects, grade_records, policy, mode=ReportMode.ANNUAL, grade_levels=None):
    """
    Pass/fail counts per basic subject and grade level.

    Args:
        grade_levels: restrict to these grade levels (default: all)

    Returns:
        list of SubjectStatRow ordered by grade level, then catalog order
    """
    mode = ReportMode(mode)
    subjects = tuple(subjects)
    students = tuple(students)
    levels = [GradeLevel(g) for g in (grade_levels or GradeLevel)]

    rows = []
    for level in levels:
        cohort = [s for s in students if s.grade_level == level]
        if not cohort:
            continue
        results = [
            evaluate(student, subjects, grade_records.get(student.id, {}), policy, mode)
            for student in cohort
        ]
        for subject in subjects:
            if not subject.is_basic or not subject.applies_to(level):
                continue
            failed = 0
            for result in results:
                outcome = result.outcome_for(subject.id)
                if outcome is not None and not outcome.passed:
                    failed += 1
            rows.append(SubjectStatRow(
                grade_level=level,
                subject_id=subject.id,
                name=subject.name,
                sat=len(results),
                passed=len(results) - failed,
                failed=failed,
            ))
    return rows

