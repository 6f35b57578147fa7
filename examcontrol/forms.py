from django import forms
from django.core.validators import MinValueValidator, MaxValueValidator
from decimal import Decimal

from .choices import GradeLevel, ReportMode, ReportScope
from . import config


class ReportOptionsForm(forms.Form):
    """Report options passed in the query string of the exam-control endpoints."""

    mode = forms.ChoiceField(choices=ReportMode.choices, required=False)
    grade = forms.ChoiceField(choices=GradeLevel.choices, required=False)
    scope = forms.ChoiceField(choices=ReportScope.choices, required=False)
    top = forms.IntegerField(required=False, min_value=0)
    high_achiever_percent = forms.DecimalField(
        required=False,
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('100'))],
    )
    high_achievers = forms.BooleanField(required=False)

    def clean_mode(self):
        return self.cleaned_data.get('mode') or ReportMode.ANNUAL

    def clean_grade(self):
        return self.cleaned_data.get('grade') or None

    def clean_scope(self):
        return self.cleaned_data.get('scope') or ReportScope.PER_GRADE

    def clean(self):
        cleaned_data = super().clean()
        # The flag alone asks for the configured threshold (the 65% report).
        if cleaned_data.get('high_achievers') and cleaned_data.get('high_achiever_percent') is None:
            cleaned_data['high_achiever_percent'] = config.HIGH_ACHIEVER_PERCENT
        return cleaned_data
