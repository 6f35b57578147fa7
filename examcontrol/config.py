"""
Configuration settings for the exam-control app.

These values can be overridden in Django settings by prefixing with EXAMCONTROL_.
For example, to change the default passing percentage:
    EXAMCONTROL_DEFAULT_MIN_PASSING_PERCENT = 50

All configuration values are lazily loaded to avoid Django setup issues.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get an exam-control setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'EXAMCONTROL_{name}', default)


_DEFAULTS = {
    # Pass/fail thresholds (percent, 0-100); a workbook's own config wins
    'DEFAULT_MIN_PASSING_PERCENT': Decimal('50'),
    'DEFAULT_MIN_EXAM_PASSING_PERCENT': Decimal('30'),
    'REMEDIAL_PASS_PERCENT': Decimal('50'),
    'SECOND_ROUND_PASS_PERCENT': Decimal('50'),
    'REMEDIAL_GRADE_LEVELS': ('p1', 'p2'),

    # Report limits
    'TOP_STUDENTS_LIMIT': 10,
    'HIGH_ACHIEVER_PERCENT': Decimal('65'),

    # Result cache
    'RESULT_CACHE_TIMEOUT': 300,  # seconds

    # API
    'API_RATE': '120/m',
    'MAX_UPLOAD_SIZE': 5 * 1024 * 1024,  # 5 MB
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
