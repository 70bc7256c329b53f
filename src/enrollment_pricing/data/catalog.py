"""
Reference Catalog - read model for classes, subjects, students and enrollments.

Loads the reference CSVs with pandas and answers the lookups the pricing
engine needs. Subject prices are read at calculation time; snapshots keep
their own copy so later edits never reach old results.
"""
import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from ..config.settings import Settings
from ..engine.models import Subject, Student, SchoolClass, Enrollment, EnrollmentStatus
from ..engine.money import to_decimal
from ..engine.parsing import parse_bool

logger = logging.getLogger(__name__)

CLASS_COLUMNS = ['class_id', 'name', 'is_active']
SUBJECT_COLUMNS = ['subject_id', 'class_id', 'name', 'base_price', 'is_free', 'is_active']
STUDENT_COLUMNS = ['student_id', 'name', 'class_id', 'is_active']
ENROLLMENT_COLUMNS = ['student_id', 'subject_id', 'status']

# Enrollment states that count towards a sibling's running total
BILLABLE_STATUSES = (EnrollmentStatus.PENDING, EnrollmentStatus.ACTIVE)


def load_table(path: Path, columns: list[str], required: bool = True) -> pd.DataFrame:
    """Read a CSV as strings, strip whitespace and check the expected columns."""
    if not path.exists():
        if required:
            raise FileNotFoundError(f"{path.name} not found at {path}.")
        return pd.DataFrame(columns=columns)

    df = pd.read_csv(path, dtype=str).fillna('')
    df.columns = [c.strip() for c in df.columns]
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name} is missing columns: {', '.join(missing)}")
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df


class SubjectCatalog:
    """
    CSV-backed catalog of classes, subjects, students and enrollments.

    Duplicate ids keep the first row, matching how the files are maintained
    (newest corrections appended are ignored until the old row is removed).
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.reload()

    def reload(self):
        """Reload all reference CSVs from disk."""
        self.classes = load_table(self.settings.classes_csv, CLASS_COLUMNS)
        self.subjects = load_table(self.settings.subjects_csv, SUBJECT_COLUMNS)
        self.students = load_table(self.settings.students_csv, STUDENT_COLUMNS)
        self.enrollments = load_table(self.settings.enrollments_csv, ENROLLMENT_COLUMNS, required=False)

        self.classes = self.classes.drop_duplicates('class_id').set_index('class_id', drop=False)
        self.subjects = self.subjects.drop_duplicates('subject_id').set_index('subject_id', drop=False)
        self.students = self.students.drop_duplicates('student_id').set_index('student_id', drop=False)

        logger.info(
            "Loaded catalog: %d classes, %d subjects, %d students, %d enrollments",
            len(self.classes), len(self.subjects), len(self.students), len(self.enrollments),
        )

    # -- lookups ----------------------------------------------------------

    def get_class(self, class_id: str) -> Optional[SchoolClass]:
        class_id = str(class_id).strip()
        if class_id not in self.classes.index:
            return None
        row = self.classes.loc[class_id]
        return SchoolClass(
            class_id=row['class_id'],
            name=row['name'],
            is_active=parse_bool(row['is_active'] or 'true'),
        )

    def get_student(self, student_id: str) -> Optional[Student]:
        student_id = str(student_id).strip()
        if student_id not in self.students.index:
            return None
        row = self.students.loc[student_id]
        return Student(
            student_id=row['student_id'],
            name=row['name'],
            class_id=row['class_id'] or None,
            is_active=parse_bool(row['is_active'] or 'true'),
        )

    def get_subjects_by_ids(self, subject_ids: list[str]) -> list[Subject]:
        """Return the known subjects among subject_ids, in request order."""
        subjects = []
        for subject_id in subject_ids:
            subject_id = str(subject_id).strip()
            if subject_id in self.subjects.index:
                subjects.append(self._row_to_subject(self.subjects.loc[subject_id]))
        return subjects

    def get_enrollments(self, student_id: str) -> list[Enrollment]:
        rows = self.enrollments[self.enrollments['student_id'] == str(student_id).strip()]
        return [
            Enrollment(
                student_id=row['student_id'],
                subject_id=row['subject_id'],
                status=EnrollmentStatus(row['status'].lower()),
            )
            for _, row in rows.iterrows()
        ]

    def get_billable_subjects(self, student_id: str) -> list[Subject]:
        """Subjects of a student's pending/active enrollments."""
        subject_ids = [
            e.subject_id for e in self.get_enrollments(student_id)
            if e.status in BILLABLE_STATUSES
        ]
        return self.get_subjects_by_ids(subject_ids)

    def list_subjects(self, class_id: Optional[str] = None) -> list[Subject]:
        df = self.subjects
        if class_id:
            df = df[df['class_id'] == str(class_id).strip()]
        return [self._row_to_subject(row) for _, row in df.iterrows()]

    def list_students(self) -> list[Student]:
        return [s for s in (self.get_student(sid) for sid in self.students.index) if s]

    def list_classes(self) -> list[SchoolClass]:
        return [c for c in (self.get_class(cid) for cid in self.classes.index) if c]

    @staticmethod
    def _row_to_subject(row) -> Subject:
        return Subject(
            subject_id=row['subject_id'],
            class_id=row['class_id'],
            name=row['name'],
            base_price=to_decimal(row['base_price'] or '0', 'base_price'),
            is_free=parse_bool(row['is_free'] or 'false'),
            is_active=parse_bool(row['is_active'] or 'true'),
        )
