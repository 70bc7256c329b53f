"""
Enrollment Pricing Package

A pricing calculation engine for class and subject enrollments.
Resolves enrollment prices using Subjects → Discounts → Taxes with an
immutable snapshot per calculation.
"""

__version__ = "1.0.0"
