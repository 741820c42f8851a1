"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REVERSAL_PATTERNS = [
    # Direct reversal prefixes
    r"^REV[-/\s]",
    r"^REVERSAL[-/\s]?",
    r"^R[-/]",
    r"^RV[-/]",
    # NEFT/RTGS
    r"^NEFT[-\s]REV",
    r"^RTGS[-\s]REV",
    r"NEFT[-\s]RETURN",
    r"RTGS[-\s]RETURN",
    # UPI
    r"^REV[-/]UPI",
    r"UPI[-\s]REV",
    r"UPI.*REVERSAL",
    # IMPS
    r"^REV[-/]IMPS",
    r"IMPS[-\s]REV",
    # Cheque returns
    r"CHQ[-\s]?RET",
    r"CHEQUE[-\s]RETURN",
    r"INWARD[-\s]RETURN",
    # NACH/ECS bounces
    r"NACH[-\s]RETURN",
    r"ECS[-\s]RETURN",
    r"NACH[-\s]BOUNCE",
    r"ECS[-\s]BOUNCE",
    # Chargebacks
    r"CHARGE[-\s]?BACK",
    r"DISPUTE[-\s]CREDIT",
    # Auto-debit and standing instruction reversals
    r"AUTO[-\s]?DEBIT[-\s]REV",
    r"SI[-\s]REV",
    # Refunds
    r"^REFUND",
    r"^RFD[-/]",
    # Failed credits
    r"CREDIT[-\s]REVERSAL",
    r"CR[-\s]REV",
]


def as_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a configured number to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class InputConfig(BaseModel):
    """Configuration for CSV snapshot loading."""

    encoding: str = "utf-8"
    delimiter: str = ","
    date_format: str = "%Y-%m-%d"


class SuggestionSettings(BaseModel):
    """Tolerance band, candidate window and result caps for suggestions."""

    tolerance_percent: float = 1.0
    tolerance_min: float = 100.0
    tolerance_max: float = 10000.0
    date_window_days: int = Field(default=30, ge=0)
    default_max_results: int = Field(default=10, gt=0)
    search_max_results: int = Field(default=20, gt=0)
    search_amount_low_factor: float = 0.8
    search_amount_high_factor: float = 1.2

    @model_validator(mode="after")
    def _check_bounds(self) -> "SuggestionSettings":
        if self.tolerance_min <= 0 or self.tolerance_max < self.tolerance_min:
            raise ValueError("tolerance bounds must satisfy 0 < tolerance_min <= tolerance_max")
        if self.tolerance_percent <= 0:
            raise ValueError("tolerance_percent must be positive")
        if not 0 < self.search_amount_low_factor <= 1 <= self.search_amount_high_factor:
            raise ValueError("search amount factors must bracket 1.0")
        return self


class ScoringSettings(BaseModel):
    """Weights and bands for the 0-100 match score."""

    amount_weight: float = 70.0
    date_weight: float = 30.0
    date_horizon_days: int = Field(default=30, gt=0)
    high_band: float = 80.0
    medium_band: float = 50.0

    @model_validator(mode="after")
    def _check_weights(self) -> "ScoringSettings":
        if self.amount_weight < 0 or self.date_weight < 0:
            raise ValueError("score weights must be non-negative")
        if self.amount_weight + self.date_weight != 100:
            raise ValueError("amount_weight + date_weight must equal 100")
        if not 0 <= self.medium_band <= self.high_band <= 100:
            raise ValueError("score bands must satisfy 0 <= medium_band <= high_band <= 100")
        return self


class DifferenceSettings(BaseModel):
    """Threshold above which a difference must be classified."""

    threshold: float = Field(default=10.0, ge=0)


class ReversalSettings(BaseModel):
    """Narration heuristics and lookback for reversal pairing."""

    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_REVERSAL_PATTERNS))
    max_days_back: int = Field(default=90, gt=0)
    max_results: int = Field(default=10, gt=0)
    reference_bonus: float = Field(default=10.0, ge=0)
    pattern_confidence: int = Field(default=75, ge=0, le=100)
    flagged_confidence: int = Field(default=90, ge=0, le=100)


class AutoReconcileSettings(BaseModel):
    """Settings for unattended reconciliation of unambiguous matches."""

    min_match_score: float = Field(default=80.0, ge=0, le=100)
    reconciled_by: str = "auto"


class LockSettings(BaseModel):
    """Per-transaction lock acquisition."""

    timeout_seconds: float = Field(default=5.0, gt=0)


class ExcelOutputConfig(BaseModel):
    """Configuration for Excel output."""

    filename_template: str = "reconciliation_report_{date}_{time}.xlsx"
    include_timestamp: bool = True


class SheetConfig(BaseModel):
    """Configuration for a report sheet."""

    enabled: bool = True
    name: str


class SheetsConfig(BaseModel):
    """Configuration for all report sheets."""

    summary: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Summary"))
    suggestions: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Suggestions"))
    reconciled: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Reconciled"))
    differences: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Differences"))
    reversal_pairs: SheetConfig = Field(
        default_factory=lambda: SheetConfig(name="Reversal Pairs")
    )


class OutputConfig(BaseModel):
    """Configuration for output."""

    excel: ExcelOutputConfig = Field(default_factory=ExcelOutputConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    input: InputConfig = Field(default_factory=InputConfig)
    suggestion: SuggestionSettings = Field(default_factory=SuggestionSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    difference: DifferenceSettings = Field(default_factory=DifferenceSettings)
    reversal: ReversalSettings = Field(default_factory=ReversalSettings)
    auto_reconcile: AutoReconcileSettings = Field(default_factory=AutoReconcileSettings)
    locks: LockSettings = Field(default_factory=LockSettings)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "input": {
            "encoding": "utf-8",
            "delimiter": ",",
            "date_format": "%Y-%m-%d",
        },
        "suggestion": {
            "tolerance_percent": 1.0,
            "tolerance_min": 100.0,
            "tolerance_max": 10000.0,
            "date_window_days": 30,
            "default_max_results": 10,
            "search_max_results": 20,
            "search_amount_low_factor": 0.8,
            "search_amount_high_factor": 1.2,
        },
        "scoring": {
            "amount_weight": 70.0,
            "date_weight": 30.0,
            "date_horizon_days": 30,
            "high_band": 80.0,
            "medium_band": 50.0,
        },
        "difference": {
            "threshold": 10.0,
        },
        "reversal": {
            "patterns": list(DEFAULT_REVERSAL_PATTERNS),
            "max_days_back": 90,
            "max_results": 10,
            "reference_bonus": 10.0,
            "pattern_confidence": 75,
            "flagged_confidence": 90,
        },
        "auto_reconcile": {
            "min_match_score": 80.0,
            "reconciled_by": "auto",
        },
        "locks": {
            "timeout_seconds": 5.0,
        },
        "output": {
            "excel": {
                "filename_template": "reconciliation_report_{date}_{time}.xlsx",
                "include_timestamp": True,
            },
            "sheets": {
                "summary": {"enabled": True, "name": "Summary"},
                "suggestions": {"enabled": True, "name": "Suggestions"},
                "reconciled": {"enabled": True, "name": "Reconciled"},
                "differences": {"enabled": True, "name": "Differences"},
                "reversal_pairs": {"enabled": True, "name": "Reversal Pairs"},
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
        },
    }


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file is unreadable or holds invalid values
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        # Deep merge user config into defaults
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Bank statement reconciliation engine configuration
# Amounts are in the base currency (two decimal places).
# reversal.patterns are regular expressions matched against the
# upper-cased narration of credit transactions.

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
