"""
Centralized settings and path configuration for the enrollment pricing engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


ROUNDING_MODES = ('half_even', 'half_up')
TAX_STACKING_MODES = ('cascading', 'parallel')


def get_project_root() -> Path:
    """Get the project root directory (where the data/ folder lives)."""
    env_root = os.environ.get('ENROLLMENT_PRICING_ROOT')
    if env_root:
        return Path(env_root).resolve()

    # Walk up from this file to find the project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path

    # Reference data (read models)
    classes_csv: Path
    subjects_csv: Path
    students_csv: Path
    enrollments_csv: Path
    tax_configurations_csv: Path
    subject_pricing_csv: Path

    # Discount rule files
    discount_rules_csv: Path
    compiled_discount_rules: Path

    # Build outputs
    data_report: Optional[Path] = None

    # Snapshot store
    snapshot_dir: Optional[Path] = None

    # Pricing policy
    currency: str = 'USD'
    rounding_mode: str = 'half_even'
    tax_stacking: str = 'cascading'

    log_level: str = 'INFO'

    def __post_init__(self):
        if self.rounding_mode not in ROUNDING_MODES:
            raise ValueError(
                f"rounding_mode must be one of {ROUNDING_MODES}, got '{self.rounding_mode}'"
            )
        if self.tax_stacking not in TAX_STACKING_MODES:
            raise ValueError(
                f"tax_stacking must be one of {TAX_STACKING_MODES}, got '{self.tax_stacking}'"
            )

    @classmethod
    def load(cls, project_root: Optional[Path] = None, **overrides) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = Path(project_root) if project_root else get_project_root()
        data_dir = root / 'data'
        rules_dir = root / 'rules'

        values = dict(
            project_root=root,
            classes_csv=data_dir / 'classes.csv',
            subjects_csv=data_dir / 'subjects.csv',
            students_csv=data_dir / 'students.csv',
            enrollments_csv=data_dir / 'enrollments.csv',
            tax_configurations_csv=data_dir / 'tax_configurations.csv',
            subject_pricing_csv=data_dir / 'subject_pricing.csv',
            discount_rules_csv=rules_dir / 'discount_rules.csv',
            compiled_discount_rules=rules_dir / 'compiled_discount_rules.json',
            data_report=data_dir / 'outputs' / 'data_report.json',
            snapshot_dir=root / 'snapshots',
            currency=os.environ.get('ENROLLMENT_PRICING_CURRENCY', 'USD'),
            rounding_mode=os.environ.get('ENROLLMENT_PRICING_ROUNDING', 'half_even'),
            tax_stacking=os.environ.get('ENROLLMENT_PRICING_TAX_STACKING', 'cascading'),
            log_level=os.environ.get('ENROLLMENT_PRICING_LOG_LEVEL', 'INFO'),
        )
        values.update(overrides)
        return cls(**values)


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
