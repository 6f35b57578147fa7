"""
Exam result engine.

Pure functions over typed, immutable inputs: no database and no caching.
Callers pass the policy and the subject catalog explicitly.
"""
from .policy import GradeDescriptor, PolicyConfig, SubjectCatalog
from .ranking import RankedResult, rank, top_students
from .records import GradeRecord, Mark, SecondRoundScore, Student, Subject, TermScore
from .results import OVERALL_TOTAL, ResultRecord, SubjectOutcome, evaluate, evaluate_cohort
from .scaling import certificate_for, displayed_min_score, scale_score
from .stats import (
    CohortGroup, CohortRow, aggregate, grade_groups, high_achievers,
    stage_group, subject_statistics, totals,
)
