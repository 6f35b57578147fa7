from __future__ import annotations

from dataclasses import dataclass

from .results import ResultRecord

# Never equal to any percentage.
NO_PERCENT = object()


@dataclass(frozen=True)
class RankedResult:
    result: ResultRecord
    rank: int

    @property
    def student_id(self):
        return self.result.student_id

    @property
    def percent(self):
        return self.result.percent

    def to_dict(self):
        data = self.result.to_dict()
        data['rank'] = self.rank
        return data


def rank(results):
    """
    Dense-rank passing students by percentage, highest first.

    Tied percentages share a rank and the next distinct percentage gets the
    following rank, so [90, 90, 85] ranks as [1, 1, 2].

    Args:
        results: iterable of ResultRecord, or a {student_id: ResultRecord} mapping

    Returns:
        list of RankedResult, best first; students who did not pass are left out
    """
    if hasattr(results, 'values'):
        results = results.values()

    passing = [r for r in results if r.passed]
    passing.sort(key=lambda r: r.percent, reverse=True)

    ranked = []
    last_percent = NO_PERCENT
    last_rank = 0
    for result in passing:
        if result.percent != last_percent:
            last_rank += 1
            last_percent = result.percent
        ranked.append(RankedResult(result=result, rank=last_rank))
    return ranked


def top_students(results, limit):
    """The first ``limit`` entries of the dense ranking."""
    return rank(results)[:max(int(limit), 0)]
