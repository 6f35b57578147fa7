"""
Certificate scaling.

Certificates may print a subject against a different maximum than the one
used for grading (for example out of 100 where the working sheet uses 50).
Scaling only changes what is printed; pass/fail always comes from the raw
scores in the ResultRecord.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from .records import to_decimal

TENTH = Decimal('0.1')
UNIT = Decimal('1')


def round_tenth(value):
    """Round half-up to one decimal place."""
    return to_decimal(value).quantize(TENTH, rounding=ROUND_HALF_UP)


def scale_score(raw_score, raw_max, certificate_max=None, enabled=True):
    """
    Express raw_score against certificate_max, rounded to one decimal.

    Args:
        raw_score: the score as graded
        raw_max: the maximum it was graded against
        certificate_max: maximum printed on the certificate (None/0 = no scaling)
        enabled: the school's "use scaled score" switch

    Returns:
        float
    """
    raw_score = to_decimal(raw_score)
    raw_max = to_decimal(raw_max) if raw_max is not None else None
    certificate_max = to_decimal(certificate_max) if certificate_max else None

    if not enabled or not certificate_max or not raw_max or certificate_max == raw_max:
        return float(round_tenth(raw_score))
    return float(round_tenth(raw_score / raw_max * certificate_max))


def printed_max(subject, enabled=True):
    if enabled and subject.certificate_max:
        return subject.certificate_max
    return subject.max_score


def displayed_min_score(subject, enabled=True):
    """Minimum score as printed on the certificate, rounded to a whole number."""
    if not enabled or not subject.certificate_max or not subject.max_score:
        return subject.min_score
    scaled = subject.min_score / subject.max_score * subject.certificate_max
    return scaled.quantize(UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CertificateLine:
    subject_id: str
    name: str
    score: float
    max_score: Decimal
    min_score: Decimal
    passed: bool
    counted: bool

    def to_dict(self):
        return {
            'subject_id': self.subject_id,
            'name': self.name,
            'score': self.score,
            'max_score': float(self.max_score),
            'min_score': float(self.min_score),
            'passed': self.passed,
            'counted': self.counted,
        }


@dataclass(frozen=True)
class Certificate:
    student_id: str
    status: str
    lines: Tuple[CertificateLine, ...]
    total_score: float
    max_total: float
    percent: float
    grade_label: str
    grade_color: str
    rank: Optional[int] = None

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'status': self.status,
            'lines': [line.to_dict() for line in self.lines],
            'total_score': self.total_score,
            'max_total': self.max_total,
            'percent': self.percent,
            'grade_label': self.grade_label,
            'grade_color': self.grade_color,
            'rank': self.rank,
        }


def certificate_for(result, subjects, policy, rank=None):
    """Printable certificate data for one ResultRecord."""
    enabled = policy.use_scaled_score
    by_id = {s.id: s for s in subjects}

    lines = []
    for outcome in result.subjects:
        subject = by_id.get(outcome.subject_id)
        if subject is None:
            continue
        lines.append(CertificateLine(
            subject_id=subject.id,
            name=subject.name,
            score=scale_score(outcome.score, subject.max_score, subject.certificate_max, enabled),
            max_score=printed_max(subject, enabled),
            min_score=displayed_min_score(subject, enabled),
            passed=outcome.passed,
            counted=outcome.counted,
        ))

    descriptor = policy.descriptor_for(result.percent)
    return Certificate(
        student_id=result.student_id,
        status=result.status,
        lines=tuple(lines),
        total_score=float(round_tenth(result.total_score)),
        max_total=float(result.max_total),
        percent=float(round_tenth(result.percent)),
        grade_label=descriptor.label,
        grade_color=descriptor.color,
        rank=rank,
    )
