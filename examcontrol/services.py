"""
Report services: run the engine over a workbook and cache the JSON payloads.

The engine itself keeps no state. Results are memoised here in Django's cache,
keyed by the workbook's content digest plus the report options, so the same
workbook is only evaluated once per mode until the cache entry expires.
"""
import hashlib
import json
import logging

from django.core.cache import cache

from . import config
from .choices import GradeLevel, ReportMode, ReportScope, Stage
from .engine import (
    aggregate, certificate_for, evaluate_cohort, grade_groups, high_achievers,
    rank, stage_group, subject_statistics, top_students, totals,
)

logger = logging.getLogger(__name__)

CACHE_PREFIX = 'examcontrol'


def cache_key(kind, workbook, **options):
    """Cache key for one report over one workbook."""
    encoded = json.dumps(options, sort_keys=True, default=str)
    options_hash = hashlib.sha256(encoded.encode('utf-8')).hexdigest()[:16]
    return f'{CACHE_PREFIX}:{kind}:{workbook.digest}:{options_hash}'


def _cached(kind, workbook, compute, **options):
    key = cache_key(kind, workbook, **options)
    payload = cache.get(key)
    if payload is not None:
        logger.debug(f'Cache hit for {kind} ({workbook.digest[:12]})')
        return payload

    payload = compute()
    cache.set(key, payload, config.RESULT_CACHE_TIMEOUT)
    logger.debug(f'Cached {kind} ({workbook.digest[:12]}) for {config.RESULT_CACHE_TIMEOUT}s')
    return payload


def _evaluate(workbook, mode, grade=None):
    return evaluate_cohort(
        workbook.students_in(grade), workbook.catalog, workbook.grade_records, workbook.policy, mode
    )


def results_report(workbook, mode=ReportMode.ANNUAL, grade=None):
    """Per-student results: {'mode', 'grade', 'results': [ResultRecord dicts]}."""
    mode = ReportMode(mode)

    def compute():
        results = _evaluate(workbook, mode, grade)
        passed = sum(1 for r in results.values() if r.passed)
        logger.info(f'Evaluated {len(results)} students ({mode}): {passed} passed')
        return {
            'mode': mode,
            'grade': grade,
            'results': [result.to_dict() for result in results.values()],
        }

    return _cached('results', workbook, compute, mode=mode, grade=grade)


def ranking_report(workbook, mode=ReportMode.ANNUAL, grade=None, top=None):
    """Dense ranking of passing students; ``top`` limits it to the best N."""
    mode = ReportMode(mode)

    def compute():
        results = _evaluate(workbook, mode, grade)
        ranked = top_students(results, top) if top else rank(results)
        return {
            'mode': mode,
            'grade': grade,
            'ranking': [entry.to_dict() for entry in ranked],
        }

    return _cached('ranking', workbook, compute, mode=mode, grade=grade, top=top)


def groups_for(workbook, scope, grade=None):
    """Cohort groups for a statistics scope."""
    if grade:
        return grade_groups([grade])
    if scope == ReportScope.PRIMARY:
        return [stage_group(Stage.PRIMARY)]
    if scope == ReportScope.PREPARATORY:
        return [stage_group(Stage.PREPARATORY)]
    if scope == ReportScope.STAGES:
        return [stage_group(Stage.PRIMARY), stage_group(Stage.PREPARATORY)]
    if scope == ReportScope.GROUPS:
        return list(workbook.groups)
    return grade_groups()


def statistics_report(workbook, mode=ReportMode.ANNUAL, scope=ReportScope.PER_GRADE, grade=None,
                      high_achiever_percent=None):
    """
    Cohort statistics rows plus a grand total.

    With ``high_achiever_percent`` the "passed" columns count students at or
    above that overall percentage instead of students with status Pass.
    """
    mode = ReportMode(mode)

    def compute():
        passed = high_achievers(high_achiever_percent) if high_achiever_percent is not None else None
        rows = aggregate(
            workbook.students, workbook.catalog, workbook.grade_records, workbook.policy,
            groups_for(workbook, scope, grade), mode=mode, passed=passed,
        )
        return {
            'mode': mode,
            'scope': scope,
            'rows': [row.to_dict() for row in rows],
            'total': totals(rows).to_dict(),
        }

    return _cached(
        'statistics', workbook, compute,
        mode=mode, scope=scope, grade=grade, high_achiever_percent=high_achiever_percent,
    )


def subject_statistics_report(workbook, mode=ReportMode.ANNUAL, grade=None):
    """Pass/fail counts per basic subject and grade level."""
    mode = ReportMode(mode)

    def compute():
        rows = subject_statistics(
            workbook.students, workbook.catalog, workbook.grade_records, workbook.policy,
            mode=mode, grade_levels=[grade] if grade else None,
        )
        return {'mode': mode, 'rows': [row.to_dict() for row in rows]}

    return _cached('subject-statistics', workbook, compute, mode=mode, grade=grade)


def certificates_report(workbook, mode=ReportMode.ANNUAL, grade=None):
    """Certificate data for every student; ranks are computed within each grade level."""
    mode = ReportMode(mode)

    def compute():
        results = _evaluate(workbook, mode, grade)
        levels = {s.id: s.grade_level for s in workbook.students}
        ranks = {}
        for level in GradeLevel:
            cohort = [r for sid, r in results.items() if levels[sid] == level]
            for entry in rank(cohort):
                ranks[entry.student_id] = entry.rank

        certificates = [
            certificate_for(result, workbook.catalog, workbook.policy, rank=ranks.get(sid))
            for sid, result in results.items()
        ]
        return {'mode': mode, 'certificates': [c.to_dict() for c in certificates]}

    return _cached('certificates', workbook, compute, mode=mode, grade=grade)
