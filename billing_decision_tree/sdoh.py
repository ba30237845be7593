"""
Social determinants of health (SDOH) enrichment.

Successful decision tree results can be enriched with Z-codes describing a
patient's social risk factors and a note on chronic care management (CCM)
eligibility.
"""

from abc import ABC, abstractmethod
from datetime import date
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .logging_config import get_logger
from .models import DecisionTreeResult, Severity, ValidationIssue

logger = get_logger(__name__)


class FactorSeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class CCMTier(str, Enum):
    STANDARD = "standard"
    COMPLEX = "complex"
    NON_ELIGIBLE = "non-eligible"


class SDOHCategory(str, Enum):
    HOUSING = "housing"
    FOOD = "food"
    TRANSPORTATION = "transportation"
    SOCIAL_ISOLATION = "social_isolation"
    FINANCIAL = "financial"
    EDUCATION = "education"
    EMPLOYMENT = "employment"


# Relative weight of common social risk Z-codes; others weigh 1
Z_CODE_WEIGHTS: Dict[str, int] = {
    "Z59.0": 3,  # Homelessness
    "Z59.1": 2,  # Inadequate housing
    "Z59.3": 2,  # Problems related to living in residential institution
    "Z59.8": 2,  # Other problems related to housing and economic circumstances
    "Z60.2": 1,  # Problems related to living alone
    "Z59.6": 2,  # Low income
}

SEVERITY_MULTIPLIERS: Dict[FactorSeverity, float] = {
    FactorSeverity.MILD: 1.0,
    FactorSeverity.MODERATE: 1.5,
    FactorSeverity.SEVERE: 2.0,
}


class SDOHFactor(BaseModel):
    """One documented social risk factor."""

    category: SDOHCategory
    z_code: str
    description: str = ""
    severity: FactorSeverity = FactorSeverity.MILD


class SocialRiskAssessment(BaseModel):
    patient_id: str
    assessment_date: date = Field(default_factory=date.today)
    factors: List[SDOHFactor] = Field(default_factory=list)
    overall_complexity_score: int = 0
    ccm_eligible: bool = False
    ccm_tier: CCMTier = CCMTier.NON_ELIGIBLE

    @property
    def z_codes(self) -> List[str]:
        return [factor.z_code for factor in self.factors]


class SocialRiskPort(ABC):
    """Source of social risk assessments."""

    @abstractmethod
    def assess_social_risk(self, patient_id: str) -> SocialRiskAssessment:
        """Return the patient's current social risk assessment."""


def calculate_complexity_score(factors: List[SDOHFactor]) -> int:
    """Sum of Z-code weight × severity multiplier over all factors, rounded."""
    score = 0.0
    for factor in factors:
        score += Z_CODE_WEIGHTS.get(factor.z_code, 1) * SEVERITY_MULTIPLIERS[factor.severity]
    return int(round(score))


def assess_ccm_eligibility(complexity_score: int, factors: List[SDOHFactor]) -> CCMTier:
    """
    Complex CCM needs a score of 4+ with at least one factor; standard
    CCM needs a score of 2+.
    """
    if complexity_score >= 4 and factors:
        return CCMTier.COMPLEX
    if complexity_score >= 2:
        return CCMTier.STANDARD
    return CCMTier.NON_ELIGIBLE


class InMemorySocialRiskData(SocialRiskPort):
    """Scores social risk factors recorded per patient."""

    def __init__(self):
        self.factors: Dict[str, List[SDOHFactor]] = {}

    def add_factor(self, patient_id: str, factor: SDOHFactor) -> None:
        self.factors.setdefault(patient_id, []).append(factor)

    def assess_social_risk(self, patient_id: str) -> SocialRiskAssessment:
        factors = list(self.factors.get(patient_id, []))
        score = calculate_complexity_score(factors)
        tier = assess_ccm_eligibility(score, factors)
        return SocialRiskAssessment(
            patient_id=patient_id,
            factors=factors,
            overall_complexity_score=score,
            ccm_eligible=tier != CCMTier.NON_ELIGIBLE,
            ccm_tier=tier,
        )


def enhance_with_sdoh(
    result: DecisionTreeResult,
    patient_id: str,
    social_risk: SocialRiskPort,
) -> DecisionTreeResult:
    """
    Add SDOH Z-codes and a CCM eligibility note to a successful result.

    Unsuccessful results are returned unchanged, as is the original result
    if the assessment cannot be obtained. The decision trail is not touched.

    Args:
        result: Decision tree result to enrich
        patient_id: Patient whose social risk is assessed
        social_risk: Assessment source

    Returns:
        A new DecisionTreeResult, or ``result`` itself when nothing applies
    """
    if not result.success or result.claim_line is None:
        return result

    try:
        assessment = social_risk.assess_social_risk(patient_id)
    except Exception as e:
        logger.warning("SDOH enhancement failed", extra={"patient_id": patient_id, "error": str(e)})
        return result

    icd10_codes = list(result.claim_line.icd10_codes)
    for z_code in assessment.z_codes:
        if z_code not in icd10_codes:
            icd10_codes.append(z_code)

    warnings = list(result.warnings)
    if assessment.ccm_eligible:
        warnings.append(ValidationIssue(
            severity=Severity.INFO,
            code="CCM_ELIGIBLE",
            message=f"Patient eligible for {assessment.ccm_tier.value} CCM services",
            suggestion="Consider adding CCM codes if time requirements are met",
        ))

    # add-on lines share the primary line's diagnosis set
    claim_line = result.claim_line.model_copy(update={"icd10_codes": icd10_codes})
    additional_lines = [
        line.model_copy(update={"icd10_codes": list(icd10_codes)})
        for line in result.additional_claim_lines
    ]
    return result.model_copy(update={
        "claim_line": claim_line,
        "additional_claim_lines": additional_lines,
        "warnings": warnings,
    })
