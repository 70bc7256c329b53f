"""
Reference Data Report - checks the reference CSVs before the engine loads them.

Reports:
- Input file hashes
- Row counts and duplicate ids
- Subjects with bad prices or unknown classes
- Enrollments pointing at unknown students or subjects
- Subject price book entries with bad prices or unknown subjects
"""
import pandas as pd
import json
import hashlib
from datetime import datetime
from decimal import InvalidOperation
from typing import Optional
from pathlib import Path

from ..config.settings import get_settings, Settings
from ..engine.money import to_decimal
from ..engine.subject_pricing import SUBJECT_PRICING_COLUMNS
from .catalog import (
    load_table, CLASS_COLUMNS, SUBJECT_COLUMNS, STUDENT_COLUMNS, ENROLLMENT_COLUMNS,
)


def get_file_hash(path: Path) -> str:
    """Get SHA256 hash of a file."""
    if not path.exists():
        return ""
    with open(path, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()[:12]


def _duplicate_ids(df: pd.DataFrame, column: str) -> list[str]:
    return sorted(df[df[column].duplicated()][column].unique().tolist())


def build_data_report(settings: Optional[Settings] = None, verbose: bool = True,
                      output_path: Optional[Path] = None) -> dict:
    """
    Check the reference data files and return a report dictionary.

    status is "failed" when a required file is missing or unreadable, or a
    subject price cannot be parsed; other problems are warnings.
    """
    settings = settings or get_settings()

    report = {
        "timestamp": datetime.now().isoformat(),
        "status": "pending",
        "input_files": {},
        "metrics": {},
        "warnings": [],
        "errors": []
    }

    inputs = {
        "classes": (settings.classes_csv, CLASS_COLUMNS, True),
        "subjects": (settings.subjects_csv, SUBJECT_COLUMNS, True),
        "students": (settings.students_csv, STUDENT_COLUMNS, True),
        "enrollments": (settings.enrollments_csv, ENROLLMENT_COLUMNS, False),
        "subject_pricing": (settings.subject_pricing_csv, SUBJECT_PRICING_COLUMNS, False),
    }

    tables = {}
    for name, (path, columns, required) in inputs.items():
        report["input_files"][name] = {"path": str(path), "hash": get_file_hash(path)}
        try:
            tables[name] = load_table(path, columns, required=required)
        except (FileNotFoundError, ValueError) as e:
            msg = f"ERROR: Failed to load {name}. {e}"
            report["errors"].append(msg)
            if verbose:
                print(msg)

    if report["errors"]:
        report["status"] = "failed"
        return report

    classes, subjects = tables["classes"], tables["subjects"]
    students, enrollments = tables["students"], tables["enrollments"]
    price_book = tables["subject_pricing"]

    for name, column in (("classes", "class_id"), ("subjects", "subject_id"), ("students", "student_id")):
        df = tables[name]
        report["metrics"][f"{name}_count"] = len(df)
        duplicates = _duplicate_ids(df, column)
        report["metrics"][f"{name}_duplicates"] = len(duplicates)
        if duplicates:
            report["warnings"].append(f"Duplicate {column} values (first row wins): {', '.join(duplicates)}")
    report["metrics"]["enrollments_count"] = len(enrollments)
    report["metrics"]["subject_prices_count"] = len(price_book)

    # Subject prices
    bad_prices = []
    for _, row in subjects.iterrows():
        try:
            price = to_decimal(row['base_price'] or '0', 'base_price')
            if price < 0:
                bad_prices.append(row['subject_id'])
        except (ValueError, InvalidOperation):
            bad_prices.append(row['subject_id'])
    if bad_prices:
        report["errors"].append(f"Subjects with invalid base_price: {', '.join(bad_prices)}")

    known_classes = set(classes['class_id'])
    orphan_subjects = sorted(set(subjects[~subjects['class_id'].isin(known_classes)]['subject_id']))
    if orphan_subjects:
        report["warnings"].append(f"Subjects with unknown class: {', '.join(orphan_subjects)}")

    orphan_students = sorted(set(
        students[(students['class_id'] != '') & ~students['class_id'].isin(known_classes)]['student_id']
    ))
    if orphan_students:
        report["warnings"].append(f"Students with unknown class: {', '.join(orphan_students)}")

    if not enrollments.empty:
        unknown = enrollments[
            ~enrollments['student_id'].isin(set(students['student_id']))
            | ~enrollments['subject_id'].isin(set(subjects['subject_id']))
        ]
        report["metrics"]["dangling_enrollments"] = len(unknown)
        if len(unknown) > 0:
            report["warnings"].append(f"{len(unknown)} enrollments reference unknown students or subjects")

    if not price_book.empty:
        bad_book_prices = []
        for _, row in price_book.iterrows():
            try:
                if to_decimal(row['base_price'], 'base_price') < 0:
                    bad_book_prices.append(row['pricing_id'])
            except (ValueError, InvalidOperation):
                bad_book_prices.append(row['pricing_id'])
        if bad_book_prices:
            report["errors"].append(f"Subject prices with invalid base_price: {', '.join(bad_book_prices)}")

        subject_classes = set(zip(subjects['subject_id'], subjects['class_id']))
        unmatched = sorted(
            row['pricing_id'] for _, row in price_book.iterrows()
            if (row['subject_id'], row['class_id']) not in subject_classes
        )
        if unmatched:
            report["warnings"].append(f"Subject prices for unknown class/subject pairs: {', '.join(unmatched)}")

    free_count = int((subjects['is_free'].str.lower() == 'true').sum())
    report["metrics"]["free_subjects"] = free_count

    report["status"] = "failed" if report["errors"] else "success"

    if verbose:
        for warning in report["warnings"]:
            print(f"WARNING: {warning}")
        print(f"Reference data check: {report['status']}")

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        if verbose:
            print(f"Data report saved to: {output_path}")

    return report


if __name__ == "__main__":
    build_data_report()
