"""
Workbook loader.

The exam-control data travels as one JSON document (the "workbook") with
camelCase keys: students, subjects, grades, config, descriptors and
gradeGroups. This module validates it and turns it into the typed records the
engine works on. Every problem is reported as a WorkbookError naming the
offending record.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Dict, Tuple

from .choices import Gender
from .engine.policy import GradeDescriptor, PolicyConfig, SubjectCatalog
from .engine.records import GradeRecord, Student, Subject
from .engine.stats import CohortGroup

logger = logging.getLogger(__name__)

GENDER_ALIASES = {
    'ذكر': Gender.MALE,
    'm': Gender.MALE,
    'male': Gender.MALE,
    'أنثى': Gender.FEMALE,
    'انثى': Gender.FEMALE,
    'f': Gender.FEMALE,
    'female': Gender.FEMALE,
}


class WorkbookError(ValueError):
    """The workbook is malformed."""


@dataclass(frozen=True)
class Workbook:
    students: Tuple[Student, ...]
    catalog: SubjectCatalog
    grade_records: Dict[str, Dict[str, GradeRecord]]
    policy: PolicyConfig
    groups: Tuple[CohortGroup, ...] = ()
    digest: str = ''

    def student(self, student_id):
        for student in self.students:
            if student.id == student_id:
                return student
        return None

    def students_in(self, grade_level=None):
        if not grade_level:
            return self.students
        return tuple(s for s in self.students if s.grade_level == grade_level)


def workbook_digest(data):
    """SHA-256 of the canonical JSON form of a workbook."""
    canonical = json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def normalize_gender(value):
    """Map the workbook's gender labels to Gender; unknown values become ''."""
    if value is None:
        return ''
    return GENDER_ALIASES.get(str(value).strip().lower(), '')


def _require(item, key, where):
    if key not in item or item[key] in (None, ''):
        raise WorkbookError(f'{where}: missing "{key}"')
    return item[key]


def _as_list(data, key):
    value = data.get(key) or []
    if not isinstance(value, list):
        raise WorkbookError(f'"{key}" must be a list')
    return value


def parse_student(item):
    where = f'Student {item.get("id", "?")}'
    try:
        return Student(
            id=str(_require(item, 'id', where)),
            grade_level=_require(item, 'gradeLevel', where),
            name=item.get('name') or '',
            gender=normalize_gender(item.get('gender')),
            classroom=item.get('classroom') or '',
            seating_number=item.get('seatingNumber'),
        )
    except WorkbookError:
        raise
    except ValueError as e:
        raise WorkbookError(f'{where}: {e}') from e


def parse_subject(item):
    where = f'Subject {item.get("id", "?")}'
    try:
        grade_levels = item.get('gradeLevels')
        if not grade_levels:
            grade_levels = Subject.levels_for_stage(item.get('stage'))
        return Subject(
            id=str(_require(item, 'id', where)),
            name=item.get('name') or str(item['id']),
            max_score=_require(item, 'maxScore', where),
            min_score=item.get('minScore') or 0,
            work_max=item.get('yearWork') or 0,
            practical_max=item.get('practicalScore') or 0,
            exam_max=item.get('examScore') or 0,
            is_added_to_total=bool(item.get('isAddedToTotal', True)),
            is_basic=bool(item.get('isBasic', True)),
            grade_levels=tuple(grade_levels),
            certificate_max=item.get('certificateMax') or None,
        )
    except WorkbookError:
        raise
    except ValueError as e:
        raise WorkbookError(f'{where}: {e}') from e


def parse_grades(grades):
    if not isinstance(grades, dict):
        raise WorkbookError('"grades" must be an object keyed by student id')

    records = {}
    for student_id, subjects in grades.items():
        if not isinstance(subjects, dict):
            raise WorkbookError(f'Grades of student {student_id} must be an object keyed by subject id')
        records[str(student_id)] = {}
        for subject_id, raw in subjects.items():
            try:
                records[str(student_id)][str(subject_id)] = GradeRecord.from_raw(raw)
            except (ValueError, AttributeError) as e:
                raise WorkbookError(f'Grades of student {student_id}, subject {subject_id}: {e}') from e
    return records


def parse_policy(config_data, descriptors):
    overrides = {}
    config_data = config_data or {}
    if config_data.get('minPassingPercent') is not None:
        overrides['min_passing_percent'] = config_data['minPassingPercent']
    if config_data.get('minExamPassingPercent') is not None:
        overrides['min_exam_passing_percent'] = config_data['minExamPassingPercent']
    overrides['use_scaled_score'] = bool(config_data.get('useScaledScore', False))

    parsed = []
    for item in descriptors:
        where = f'Descriptor {item.get("id", item.get("label", "?"))}'
        try:
            parsed.append(GradeDescriptor(
                label=_require(item, 'label', where),
                min_percent=_require(item, 'minPercent', where),
                color=item.get('color') or '#000000',
                id=item.get('id'),
            ))
        except WorkbookError:
            raise
        except ValueError as e:
            raise WorkbookError(f'{where}: {e}') from e
    overrides['descriptors'] = tuple(parsed)

    try:
        return PolicyConfig.from_settings(**overrides)
    except ValueError as e:
        raise WorkbookError(f'Config: {e}') from e


def parse_groups(items):
    groups = []
    for item in items:
        where = f'Grade group {item.get("id", "?")}'
        try:
            groups.append(CohortGroup(
                label=item.get('name') or str(item.get('id', '')),
                grade_levels=tuple(_require(item, 'grades', where)),
            ))
        except WorkbookError:
            raise
        except ValueError as e:
            raise WorkbookError(f'{where}: {e}') from e
    return tuple(groups)


def load_workbook(data):
    """
    Validate a decoded workbook and build the engine inputs.

    Args:
        data: dict decoded from the workbook JSON

    Returns:
        Workbook

    Raises:
        WorkbookError: on any malformed record
    """
    if not isinstance(data, dict):
        raise WorkbookError('Workbook must be a JSON object')

    students = tuple(parse_student(item) for item in _as_list(data, 'students'))
    seen = set()
    for student in students:
        if student.id in seen:
            raise WorkbookError(f'Duplicate student id: {student.id}')
        seen.add(student.id)

    try:
        catalog = SubjectCatalog(parse_subject(item) for item in _as_list(data, 'subjects'))
    except WorkbookError:
        raise
    except ValueError as e:
        raise WorkbookError(str(e)) from e

    workbook = Workbook(
        students=students,
        catalog=catalog,
        grade_records=parse_grades(data.get('grades') or {}),
        policy=parse_policy(data.get('config'), _as_list(data, 'descriptors')),
        groups=parse_groups(_as_list(data, 'gradeGroups')),
        digest=workbook_digest(data),
    )
    logger.debug(
        f'Loaded workbook {workbook.digest[:12]}: {len(students)} students, {len(catalog)} subjects'
    )
    return workbook


def read_workbook(file):
    """Read the raw workbook JSON from a path or an open file."""
    try:
        if hasattr(file, 'read'):
            data = json.load(file)
        else:
            with open(file, encoding='utf-8') as f:
                data = json.load(f)
    except json.JSONDecodeError as e:
        raise WorkbookError(f'Invalid JSON: {e}') from e
    return data


def merge_grades(data, grades):
    """Return a copy of the workbook data with grade entries overlaid per term."""
    merged = dict(data)
    merged_grades = {sid: dict(subjects) for sid, subjects in (data.get('grades') or {}).items()}
    for student_id, subjects in grades.items():
        student_grades = merged_grades.setdefault(student_id, {})
        for subject_id, record in subjects.items():
            current = dict(student_grades.get(subject_id) or {})
            current.update(record)
            student_grades[subject_id] = current
    merged['grades'] = merged_grades
    return merged
