#!/usr/bin/env python
"""
Build pipeline - compiles discount rules, checks reference data, runs tests.

Usage:
    python scripts/build_all.py
"""
import sys
import subprocess
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from enrollment_pricing.config.settings import get_settings
from enrollment_pricing.data.data_report import build_data_report
from enrollment_pricing.rules.compile_rules import compile_rules


def main():
    settings = get_settings()

    print("=" * 60)
    print("ENROLLMENT PRICING BUILD PIPELINE")
    print("=" * 60)
    print()

    print("[1/3] Compiling discount rules...")
    success, rules, errors = compile_rules(settings.discount_rules_csv, settings.compiled_discount_rules)
    if not success:
        print("\n❌ RULE COMPILATION FAILED")
        for error in errors:
            print(f"  ERROR: {error}")
        sys.exit(1)

    print()
    print("[2/3] Checking reference data...")
    report = build_data_report(settings, verbose=True, output_path=settings.data_report)

    if report["status"] != "success":
        print("\n❌ BUILD FAILED")
        for error in report["errors"]:
            print(f"  ERROR: {error}")
        sys.exit(1)

    print()
    print("[3/3] Running tests...")
    test_result = subprocess.run(
        [sys.executable, '-m', 'pytest', 'tests', '-q', '--tb=short'],
        cwd=settings.project_root
    )

    if test_result.returncode != 0:
        print("\n❌ TESTS FAILED")
        sys.exit(1)

    print()
    print("=" * 60)
    print("✅ BUILD COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Discount rules: {len(rules)}")
    print(f"  Classes: {report['metrics']['classes_count']}")
    print(f"  Subjects: {report['metrics']['subjects_count']} ({report['metrics']['free_subjects']} free)")
    print(f"  Students: {report['metrics']['students_count']}")
    print(f"  Warnings: {len(report['warnings'])}")


if __name__ == "__main__":
    main()
