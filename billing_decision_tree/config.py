"""
Decision tree configuration.
"""

from pathlib import Path
from typing import Dict, Union

from pydantic import BaseModel, Field


def _default_payer_multipliers() -> Dict[str, float]:
    # Checked in order against the lower-cased payer id
    return {
        "medicare": 1.0,
        "medicaid": 0.7,
        "blue_cross": 1.4,
        "aetna": 1.35,
        "united": 1.38,
        "cigna": 1.32,
        "commercial": 1.3,
    }


class DecisionTreeConfig(BaseModel):
    """Tunable settings for a decision tree run."""

    enable_eligibility_check: bool = True
    require_authorization: bool = Field(
        False,
        description="No prior-authorization workflow exists; enabling this denies eligible runs"
    )
    enable_medical_necessity_check: bool = True
    manual_review_threshold: int = Field(70, ge=0, le=100)

    # Fee resolution
    conversion_factor: float = Field(33.2875, gt=0, description="Medicare conversion factor (2024)")
    geographic_modifier: float = Field(1.0, gt=0)
    default_base_rate: float = Field(100.0, ge=0)
    chargemaster_multiplier: float = Field(1.5, gt=0)
    default_payer_multiplier: float = Field(1.3, gt=0)
    payer_type_multipliers: Dict[str, float] = Field(default_factory=_default_payer_multipliers)

    # Coding
    unspecified_diagnosis_code: str = "Z00.00"
    new_patient_lookback_years: int = Field(3, ge=1)
    prolonged_service_code: str = "99417"
    prolonged_service_increment_minutes: int = Field(15, gt=0)
    max_prolonged_units: int = Field(16, ge=1)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "DecisionTreeConfig":
        """Load configuration from a JSON file; omitted keys keep their defaults."""
        with open(path, 'r') as f:
            return cls.model_validate_json(f.read())
