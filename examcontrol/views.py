"""
JSON endpoints of the exam-control app.

Every endpoint takes the workbook as the JSON body of a POST request and the
report options in the query string.
"""
import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from django_ratelimit.decorators import ratelimit

from . import config, services
from .forms import ReportOptionsForm
from .workbook import WorkbookError, load_workbook

logger = logging.getLogger(__name__)


def api_rate(group, request):
    return config.API_RATE


def error_response(message, status=400, **extra):
    return JsonResponse({'error': message, **extra}, status=status)


def parse_request(request):
    """
    Decode the workbook body and validate the query-string options.

    Returns:
        tuple: (workbook, options, None) or (None, None, error response)
    """
    if len(request.body) > config.MAX_UPLOAD_SIZE:
        return None, None, error_response('Workbook is too large.')

    form = ReportOptionsForm(request.GET)
    if not form.is_valid():
        return None, None, error_response('Invalid options.', errors=form.errors.get_json_data())

    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None, error_response('Invalid JSON')

    try:
        workbook = load_workbook(data)
    except WorkbookError as e:
        logger.warning(f'Rejected workbook: {e}')
        return None, None, error_response(str(e))

    return workbook, form.cleaned_data, None


@csrf_exempt
@require_POST
def results(request):
    """Per-student results for one reporting mode."""
    workbook, options, error = parse_request(request)
    if error:
        return error
    return JsonResponse(services.results_report(workbook, options['mode'], options['grade']))


@csrf_exempt
@require_POST
def ranking(request):
    """Dense ranking of passing students (top N, all when top=0)."""
    workbook, options, error = parse_request(request)
    if error:
        return error

    top = options['top']
    if top is None:
        top = config.TOP_STUDENTS_LIMIT
    return JsonResponse(
        services.ranking_report(workbook, options['mode'], options['grade'], top=top or None)
    )


@csrf_exempt
@require_POST
@ratelimit(key='ip', rate=api_rate, block=True)
def statistics(request):
    """Cohort statistics by gender, per grade, stage or workbook grade group."""
    workbook, options, error = parse_request(request)
    if error:
        return error
    return JsonResponse(services.statistics_report(
        workbook,
        options['mode'],
        scope=options['scope'],
        grade=options['grade'],
        high_achiever_percent=options['high_achiever_percent'],
    ))


@csrf_exempt
@require_POST
@ratelimit(key='ip', rate=api_rate, block=True)
def subject_statistics(request):
    """Pass/fail counts per basic subject."""
    workbook, options, error = parse_request(request)
    if error:
        return error
    return JsonResponse(services.subject_statistics_report(workbook, options['mode'], options['grade']))


@csrf_exempt
@require_POST
def certificates(request):
    """Certificate data with scaled scores, descriptor bands and ranks."""
    workbook, options, error = parse_request(request)
    if error:
        return error
    return JsonResponse(services.certificates_report(workbook, options['mode'], options['grade']))
