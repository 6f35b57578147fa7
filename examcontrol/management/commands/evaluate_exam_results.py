"""
Management command to evaluate a workbook and print results, ranking and statistics.

Usage:
    python manage.py evaluate_exam_results workbook.json --mode annual --grade m1
    python manage.py evaluate_exam_results workbook.json --top 10
    python manage.py evaluate_exam_results workbook.json --stats --mode combined

    # Overlay grades from a spreadsheet (long format) before evaluating
    python manage.py evaluate_exam_results workbook.json --grades-sheet grades.xlsx
"""
import json

from django.core.management.base import BaseCommand, CommandError

from examcontrol import services
from examcontrol.choices import GradeLevel, ReportMode, ReportScope
from examcontrol.sheets import SheetError, read_grade_sheet, read_student_roster
from examcontrol.workbook import WorkbookError, load_workbook, merge_grades, read_workbook


class Command(BaseCommand):
    help = 'Evaluate exam results for a workbook (results, ranking or cohort statistics)'

    def add_arguments(self, parser):
        parser.add_argument('workbook', type=str, help='Path to the workbook JSON file')
        parser.add_argument(
            '--mode',
            choices=ReportMode.values,
            default=ReportMode.ANNUAL,
            help='Reporting mode (default: annual)',
        )
        parser.add_argument(
            '--grade',
            choices=GradeLevel.values,
            help='Only evaluate students of this grade level',
        )
        parser.add_argument(
            '--top',
            type=int,
            help='Print the dense ranking of the best N passing students',
        )
        parser.add_argument(
            '--stats',
            action='store_true',
            help='Print cohort statistics instead of per-student results',
        )
        parser.add_argument(
            '--scope',
            choices=ReportScope.values,
            default=ReportScope.PER_GRADE,
            help='Grouping of the statistics rows (default: per_grade)',
        )
        parser.add_argument(
            '--grades-sheet',
            type=str,
            help='Grade sheet (.xlsx/.csv) overlaid on the workbook grades',
        )
        parser.add_argument(
            '--roster',
            type=str,
            help='Student roster (.xlsx/.csv) replacing the workbook students',
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print the raw JSON payload',
        )

    def handle(self, *args, **options):
        workbook = self._load(options)
        mode = options['mode']
        grade = options.get('grade')

        if options['stats']:
            payload = services.statistics_report(workbook, mode, scope=options['scope'], grade=grade)
            render = self.write_statistics
        elif options.get('top') is not None:
            if options['top'] < 1:
                raise CommandError('--top must be at least 1')
            payload = services.ranking_report(workbook, mode, grade, top=options['top'])
            render = self.write_ranking
        else:
            payload = services.results_report(workbook, mode, grade)
            render = self.write_results

        if options['json']:
            self.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
        else:
            render(payload)

    def _load(self, options):
        """Read the workbook, apply spreadsheet overlays and validate it."""
        try:
            data = read_workbook(options['workbook'])
            if options.get('roster'):
                data = dict(data, students=read_student_roster(options['roster']))
            if options.get('grades_sheet'):
                data = merge_grades(data, read_grade_sheet(options['grades_sheet']))
            return load_workbook(data)
        except OSError as e:
            raise CommandError(f'Cannot read input: {e}')
        except (WorkbookError, SheetError) as e:
            raise CommandError(str(e))

    def write_results(self, payload):
        results = payload['results']
        for result in results:
            line = f"{result['student_id']:<12} {result['status']:<9} {result['percent']:6.1f}%"
            if result['failed_subjects']:
                reasons = ', '.join(
                    f'{name} ({result["failure_reasons"][name]})' for name in result['failed_subjects']
                )
                line += f'  {reasons}'
            style = self.style.SUCCESS if result['status'] == 'Pass' else self.style.WARNING
            self.stdout.write(style(line))

        passed = sum(1 for r in results if r['status'] == 'Pass')
        self.stdout.write(f'{passed} of {len(results)} students passed ({payload["mode"]})')

    def write_ranking(self, payload):
        if not payload['ranking']:
            self.stdout.write('No passing students to rank.')
            return
        for entry in payload['ranking']:
            self.stdout.write(f"{entry['rank']:>3}. {entry['student_id']:<12} {entry['percent']:6.1f}%")

    def write_statistics(self, payload):
        header = f"{'Group':<28} {'Reg':>5} {'Pres':>5} {'Abs':>5} {'Pass':>5} {'Fail':>5} {'%':>7}"
        self.stdout.write(header)
        for row in payload['rows'] + [payload['total']]:
            self.stdout.write(
                f"{row['label']:<28} {row['registered']['total']:>5} {row['present']['total']:>5} "
                f"{row['absent']['total']:>5} {row['passed']['total']:>5} {row['failed']['total']:>5} "
                f"{row['percent']:>6.1f}%"
            )
