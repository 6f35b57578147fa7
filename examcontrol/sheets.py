"""
Spreadsheet readers for grade sheets and student rosters (.xlsx or .csv).

Both readers return plain workbook-shaped data (the same camelCase layout as
the JSON workbook) so that everything still goes through load_workbook.
"""
import logging
import os

import pandas as pd

from . import config

logger = logging.getLogger(__name__)

GRADE_COLUMNS = ['student_id', 'subject_id', 'term', 'work', 'practical', 'exam']
ROSTER_COLUMNS = ['id', 'grade_level']

ABSENCE_MARKERS = {'-1', 'غ', 'abs', 'absent'}

TERM_ALIASES = {
    '1': 'term1',
    'term1': 'term1',
    '2': 'term2',
    'term2': 'term2',
    'second': 'secondRole',
    'second_round': 'secondRole',
    'secondrole': 'secondRole',
    'دور ثان': 'secondRole',
}


class SheetError(ValueError):
    """The spreadsheet cannot be used."""


def clean_value(value):
    """Clean a cell value, handling NaN and empty strings."""
    if value is None:
        return ''
    if isinstance(value, float) and pd.isna(value):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_mark(value, where):
    """Cell -> raw workbook value: a number, -1 for absence, None when blank."""
    value = clean_value(value)
    if not value:
        return None
    if value.lower() in ABSENCE_MARKERS:
        return -1
    try:
        number = float(value)
    except ValueError:
        raise SheetError(f'{where}: "{value}" is not a score')
    if number == -1:
        return -1
    if number < 0:
        raise SheetError(f'{where}: score cannot be negative ({value})')
    return int(number) if number.is_integer() else number


def _file_name(file):
    return getattr(file, 'name', None) or str(file)


def read_frame(file, expected_columns):
    """
    Read an .xlsx or .csv file into a DataFrame with normalized column names.

    Raises:
        SheetError: unsupported type, too large, unreadable, empty or missing columns
    """
    name = _file_name(file)
    ext = os.path.splitext(name)[1].lstrip('.').lower()
    if ext not in ['xlsx', 'csv']:
        raise SheetError('Only .xlsx and .csv files are supported.')

    size = getattr(file, 'size', None)
    if size is not None and size > config.MAX_UPLOAD_SIZE:
        raise SheetError(f'{name} is larger than {config.MAX_UPLOAD_SIZE} bytes.')

    try:
        if ext == 'xlsx':
            df = pd.read_excel(file, engine='openpyxl', dtype=object)
        else:
            df = pd.read_csv(file, dtype=object)
    except (ValueError, OSError) as e:
        raise SheetError(f'Could not read {name}: {e}') from e

    if df.empty:
        raise SheetError(f'{name} is empty.')

    df.columns = df.columns.str.strip().str.lower().str.replace(' ', '_')
    missing = [c for c in expected_columns if c not in df.columns]
    if missing:
        raise SheetError(f'{name} is missing columns: {", ".join(missing)}')
    return df


def read_grade_sheet(file):
    """
    Read a long-format grade sheet.

    One row per student, subject and term with the columns
    student_id, subject_id, term, work, practical, exam. Second-round rows
    (term "second_round") only use the exam column plus an optional
    is_excused column.

    Returns:
        dict: {student_id: {subject_id: {term: {...}}}} in workbook layout
    """
    df = read_frame(file, GRADE_COLUMNS)
    grades = {}

    for idx, row in df.iterrows():
        row_num = idx + 2  # Excel row number
        where = f'Row {row_num}'

        student_id = clean_value(row.get('student_id'))
        subject_id = clean_value(row.get('subject_id'))
        if not student_id or not subject_id:
            raise SheetError(f'{where}: student_id and subject_id are required')

        term = TERM_ALIASES.get(clean_value(row.get('term')).lower())
        if term is None:
            raise SheetError(f'{where}: unknown term "{clean_value(row.get("term"))}"')

        record = grades.setdefault(student_id, {}).setdefault(subject_id, {})
        if term in record:
            raise SheetError(f'{where}: duplicate {term} row for student {student_id}, subject {subject_id}')

        if term == 'secondRole':
            excused = clean_value(row.get('is_excused')).lower() in ('1', 'true', 'yes', 'y')
            record[term] = {'exam': parse_mark(row.get('exam'), where), 'isExcused': excused}
        else:
            record[term] = {
                'work': parse_mark(row.get('work'), where),
                'practical': parse_mark(row.get('practical'), where),
                'exam': parse_mark(row.get('exam'), where),
            }

    logger.info(f'Read grade sheet {_file_name(file)}: {len(df)} rows, {len(grades)} students')
    return grades


def read_student_roster(file):
    """
    Read a student roster.

    Returns:
        list: student dicts in workbook layout
    """
    df = read_frame(file, ROSTER_COLUMNS)
    students = []
    seen = set()

    for idx, row in df.iterrows():
        where = f'Row {idx + 2}'
        student_id = clean_value(row.get('id'))
        grade_level = clean_value(row.get('grade_level')).lower()
        if not student_id:
            raise SheetError(f'{where}: id is required')
        if not grade_level:
            raise SheetError(f'{where}: grade_level is required')
        if student_id in seen:
            raise SheetError(f'{where}: duplicate student id "{student_id}"')
        seen.add(student_id)

        seating_number = clean_value(row.get('seating_number'))
        try:
            seating_number = int(float(seating_number)) if seating_number else None
        except ValueError:
            raise SheetError(f'{where}: seating_number "{seating_number}" is not a number')

        students.append({
            'id': student_id,
            'name': clean_value(row.get('name')),
            'gradeLevel': grade_level,
            'gender': clean_value(row.get('gender')),
            'classroom': clean_value(row.get('classroom')),
            'seatingNumber': seating_number,
        })

    logger.info(f'Read student roster {_file_name(file)}: {len(students)} students')
    return students
