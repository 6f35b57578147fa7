from django.db import models
from django.utils.translation import gettext_lazy as _


class Stage(models.TextChoices):
    PRIMARY = 'primary', _('Primary')
    PREPARATORY = 'preparatory', _('Preparatory')


class GradeLevel(models.TextChoices):
    P1 = 'p1', _('First Primary')
    P2 = 'p2', _('Second Primary')
    P3 = 'p3', _('Third Primary')
    P4 = 'p4', _('Fourth Primary')
    P5 = 'p5', _('Fifth Primary')
    P6 = 'p6', _('Sixth Primary')
    M1 = 'm1', _('First Preparatory')
    M2 = 'm2', _('Second Preparatory')
    M3 = 'm3', _('Third Preparatory')

    @property
    def stage(self):
        return Stage.PRIMARY if self.value.startswith('p') else Stage.PREPARATORY

    @classmethod
    def for_stage(cls, stage):
        return tuple(level for level in cls if level.stage == stage)


class Gender(models.TextChoices):
    MALE = 'M', _('Male')
    FEMALE = 'F', _('Female')


class ReportMode(models.TextChoices):
    TERM1 = 'term1', _('First Term')
    TERM2 = 'term2', _('Second Term')
    ANNUAL = 'annual', _('End of Year')
    COMBINED = 'combined', _('First and Second Round')


class ResultStatus(models.TextChoices):
    PASS = 'Pass', _('Pass')
    FAIL = 'Fail', _('Fail')
    REMEDIAL = 'Remedial', _('Needs Support')


class FailureReason(models.TextChoices):
    ABSENCE = 'absence', _('Absent from the written exam')
    WRITTEN_EXAM_FLOOR = 'written_exam_floor', _('Below the written-exam minimum')
    BELOW_REMEDIAL_THRESHOLD = 'below_remedial_threshold', _('Below the remedial threshold')
    BELOW_ANNUAL_AVERAGE = 'below_annual_average', _('Annual average below the passing floor')
    BELOW_PASSING_FLOOR = 'below_passing_floor', _('Below the passing floor')
    BELOW_OVERALL_FLOOR = 'below_overall_floor', _('Overall percentage below the passing floor')
    SECOND_ROUND_ABSENCE = 'second_round_absence', _('Absent from the second-round exam')
    SECOND_ROUND_MISSING = 'second_round_missing', _('No second-round score')
    BELOW_SECOND_ROUND_THRESHOLD = 'below_second_round_threshold', _('Second-round score below the threshold')


class ExamRound(models.TextChoices):
    FIRST = 'first', _('First Round')
    SECOND = 'second', _('Second Round')


class ReportScope(models.TextChoices):
    PER_GRADE = 'per_grade', _('One row per grade level')
    PRIMARY = 'primary', _('All primary grades combined')
    PREPARATORY = 'preparatory', _('All preparatory grades combined')
    STAGES = 'stages', _('One row per stage')
    GROUPS = 'groups', _('Grade groups of the workbook')
