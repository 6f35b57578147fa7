"""
Typed input records for the result engine.

A raw score component in the exam-control data is a number, the absence
sentinel ``-1``, or nothing at all. ``Mark`` keeps those three cases apart so
that "recorded absent" can never be confused with "never entered".
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from ..choices import GradeLevel, Stage

ABSENT_SENTINEL = -1
ZERO = Decimal('0')


def to_decimal(value):
    """Convert a number to Decimal through its string form (avoids float noise)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f'Not a score: {value!r}')
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'Not a number: {value!r}')


@dataclass(frozen=True)
class Mark:
    """One score component: a score, an absence, or nothing entered."""
    SCORE = 'score'
    ABSENT = 'absent'
    NOT_ENTERED = 'not_entered'

    state: str = NOT_ENTERED
    value: Decimal = ZERO

    @classmethod
    def score(cls, value):
        value = to_decimal(value)
        if value < 0:
            raise ValueError(f'Score cannot be negative: {value}')
        return cls(cls.SCORE, value)

    @classmethod
    def absent(cls):
        return cls(cls.ABSENT)

    @classmethod
    def not_entered(cls):
        return cls(cls.NOT_ENTERED)

    @classmethod
    def from_raw(cls, raw):
        """Build a Mark from a raw workbook value (number, -1, None or '')."""
        if raw is None or raw == '':
            return cls.not_entered()
        if to_decimal(raw) == ABSENT_SENTINEL:
            return cls.absent()
        return cls.score(raw)

    @property
    def is_absent(self):
        return self.state == self.ABSENT

    @property
    def is_entered(self):
        return self.state != self.NOT_ENTERED

    @property
    def points(self):
        """Value used when summing: absences and blanks count as zero."""
        return self.value if self.state == self.SCORE else ZERO

    def to_raw(self):
        if self.state == self.ABSENT:
            return ABSENT_SENTINEL
        if self.state == self.NOT_ENTERED:
            return None
        return float(self.value)


@dataclass(frozen=True)
class TermScore:
    work: Mark = field(default_factory=Mark.not_entered)
    practical: Mark = field(default_factory=Mark.not_entered)
    exam: Mark = field(default_factory=Mark.not_entered)

    @classmethod
    def from_raw(cls, data):
        data = data or {}
        return cls(
            work=Mark.from_raw(data.get('work')),
            practical=Mark.from_raw(data.get('practical')),
            exam=Mark.from_raw(data.get('exam')),
        )

    @property
    def total(self):
        return self.work.points + self.practical.points + self.exam.points

    @property
    def is_entered(self):
        return self.work.is_entered or self.practical.is_entered or self.exam.is_entered

    def to_dict(self):
        return {
            'work': self.work.to_raw(),
            'practical': self.practical.to_raw(),
            'exam': self.exam.to_raw(),
        }


@dataclass(frozen=True)
class SecondRoundScore:
    exam: Mark = field(default_factory=Mark.not_entered)
    is_excused: bool = False

    @classmethod
    def from_raw(cls, data):
        return cls(
            exam=Mark.from_raw(data.get('exam')),
            is_excused=bool(data.get('isExcused', False)),
        )

    def to_dict(self):
        return {'exam': self.exam.to_raw(), 'isExcused': self.is_excused}


@dataclass(frozen=True)
class GradeRecord:
    """Scores of one student in one subject."""
    term1: TermScore = field(default_factory=TermScore)
    term2: TermScore = field(default_factory=TermScore)
    second_round: Optional[SecondRoundScore] = None

    @classmethod
    def from_raw(cls, data):
        data = data or {}
        second_round = data.get('secondRole', data.get('second_round'))
        return cls(
            term1=TermScore.from_raw(data.get('term1')),
            term2=TermScore.from_raw(data.get('term2')),
            second_round=SecondRoundScore.from_raw(second_round) if second_round is not None else None,
        )

    def to_dict(self):
        data = {'term1': self.term1.to_dict(), 'term2': self.term2.to_dict()}
        if self.second_round is not None:
            data['secondRole'] = self.second_round.to_dict()
        return data


EMPTY_RECORD = GradeRecord()


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    max_score: Decimal
    min_score: Decimal
    work_max: Decimal = ZERO
    practical_max: Decimal = ZERO
    exam_max: Decimal = ZERO
    is_added_to_total: bool = True
    is_basic: bool = True
    grade_levels: Tuple[str, ...] = ()
    certificate_max: Optional[Decimal] = None

    def __post_init__(self):
        for name in ('max_score', 'min_score', 'work_max', 'practical_max', 'exam_max'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if self.certificate_max is not None:
            object.__setattr__(self, 'certificate_max', to_decimal(self.certificate_max))
        object.__setattr__(self, 'grade_levels', tuple(GradeLevel(level) for level in self.grade_levels))

        components = self.work_max + self.practical_max + self.exam_max
        if components != self.max_score:
            raise ValueError(
                f'Subject "{self.name}": max score {self.max_score} does not equal '
                f'work + practical + exam ({components})'
            )

    @property
    def has_written_exam(self):
        return self.exam_max > 0

    def applies_to(self, grade_level):
        return grade_level in self.grade_levels

    @staticmethod
    def levels_for_stage(stage):
        if stage in (None, '', 'all'):
            return tuple(GradeLevel)
        return GradeLevel.for_stage(Stage(stage))


@dataclass(frozen=True)
class Student:
    id: str
    grade_level: str
    name: str = ''
    gender: str = ''
    classroom: str = ''
    seating_number: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'grade_level', GradeLevel(self.grade_level))
