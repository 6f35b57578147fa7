"""
Pass/fail policy and the subject catalog.

Both are plain values handed to the engine by the caller; nothing in here
reads global state. ``PolicyConfig.from_settings()`` is the one bridge to the
Django settings and is only used by the orchestration layer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from ..choices import GradeLevel
from .records import to_decimal

HUNDRED = Decimal('100')

FALLBACK_DESCRIPTOR_LABEL = 'Below standard'
FALLBACK_DESCRIPTOR_COLOR = '#ef4444'


@dataclass(frozen=True)
class GradeDescriptor:
    """Display band: a percentage at or above min_percent earns this label."""
    label: str
    min_percent: Decimal
    color: str = '#000000'
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'min_percent', to_decimal(self.min_percent))

    def to_dict(self):
        return {'label': self.label, 'min_percent': float(self.min_percent), 'color': self.color}


FALLBACK_DESCRIPTOR = GradeDescriptor(
    label=FALLBACK_DESCRIPTOR_LABEL,
    min_percent=Decimal('0'),
    color=FALLBACK_DESCRIPTOR_COLOR,
)


@dataclass(frozen=True)
class PolicyConfig:
    min_passing_percent: Decimal = Decimal('50')
    min_exam_passing_percent: Decimal = Decimal('30')
    descriptors: Tuple[GradeDescriptor, ...] = ()
    use_scaled_score: bool = False
    remedial_pass_percent: Decimal = Decimal('50')
    second_round_pass_percent: Decimal = Decimal('50')
    remedial_grade_levels: Tuple[str, ...] = (GradeLevel.P1, GradeLevel.P2)

    def __post_init__(self):
        for name in ('min_passing_percent', 'min_exam_passing_percent',
                     'remedial_pass_percent', 'second_round_pass_percent'):
            value = to_decimal(getattr(self, name))
            if not 0 <= value <= 100:
                raise ValueError(f'{name} must be between 0 and 100, got {value}')
            object.__setattr__(self, name, value)

        descriptors = sorted(self.descriptors, key=lambda d: d.min_percent)
        object.__setattr__(self, 'descriptors', tuple(descriptors))
        object.__setattr__(
            self, 'remedial_grade_levels',
            tuple(GradeLevel(level) for level in self.remedial_grade_levels)
        )

    @classmethod
    def from_settings(cls, **overrides):
        """Build a policy from the EXAMCONTROL_* settings, with keyword overrides."""
        from .. import config

        values = {
            'min_passing_percent': config.DEFAULT_MIN_PASSING_PERCENT,
            'min_exam_passing_percent': config.DEFAULT_MIN_EXAM_PASSING_PERCENT,
            'remedial_pass_percent': config.REMEDIAL_PASS_PERCENT,
            'second_round_pass_percent': config.SECOND_ROUND_PASS_PERCENT,
            'remedial_grade_levels': tuple(config.REMEDIAL_GRADE_LEVELS),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def pass_fraction(self):
        return self.min_passing_percent / HUNDRED

    @property
    def exam_fraction(self):
        return self.min_exam_passing_percent / HUNDRED

    @property
    def remedial_fraction(self):
        return self.remedial_pass_percent / HUNDRED

    @property
    def second_round_fraction(self):
        return self.second_round_pass_percent / HUNDRED

    def is_remedial(self, grade_level):
        return grade_level in self.remedial_grade_levels

    def descriptor_for(self, percent):
        """Highest band whose min_percent <= percent, scanning ascending."""
        percent = to_decimal(percent)
        found = None
        for descriptor in self.descriptors:
            if descriptor.min_percent <= percent:
                found = descriptor
            else:
                break
        return found or FALLBACK_DESCRIPTOR

    def to_dict(self):
        return {
            'min_passing_percent': float(self.min_passing_percent),
            'min_exam_passing_percent': float(self.min_exam_passing_percent),
            'use_scaled_score': self.use_scaled_score,
            'descriptors': [d.to_dict() for d in self.descriptors],
        }


@dataclass(frozen=True)
class SubjectCatalog:
    """All subjects of a school, looked up per grade level."""
    subjects: Tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'subjects', tuple(self.subjects))
        seen = set()
        for subject in self.subjects:
            if subject.id in seen:
                raise ValueError(f'Duplicate subject id: {subject.id}')
            seen.add(subject.id)

    def __iter__(self):
        return iter(self.subjects)

    def __len__(self):
        return len(self.subjects)

    def for_grade(self, grade_level):
        """Subjects taught at a grade level, in catalog order."""
        return tuple(s for s in self.subjects if s.applies_to(grade_level))

    def basic_for_grade(self, grade_level):
        return tuple(s for s in self.for_grade(grade_level) if s.is_basic)

    def get(self, subject_id):
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject
        return None
