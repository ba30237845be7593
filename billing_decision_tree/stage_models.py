"""
Result models returned by the individual decision tree stages.

Each stage reports its outcome as data; the orchestrator inspects these
results and decides whether to proceed, deny, or defer to manual review.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .models import DataAmount, RiskLevel


class ClassificationType(str, Enum):
    PROCEDURAL = "procedural"
    EVALUATION_MANAGEMENT = "evaluation_management"
    UNKNOWN = "unknown"


class RateSource(str, Enum):
    """Where an applied rate came from."""

    CONTRACTED = "contracted"
    MEDICARE = "medicare"
    RBRVS = "rbrvs"
    CHARGEMASTER = "chargemaster"
    DEFAULT = "default"


class PlaceOfServiceValidation(BaseModel):
    valid: bool
    message: str
    pos_description: Optional[str] = None


class EligibilityCheckResult(BaseModel):
    """Node A outcome."""

    eligible: bool
    authorized: bool = False
    authorization_required: bool = False
    denial_reason: Optional[str] = None
    plan_name: Optional[str] = None


class ServiceClassification(BaseModel):
    """Node B outcome."""

    classification_type: ClassificationType
    confidence: int = Field(..., ge=0, le=100)
    rationale: str
    place_of_service_valid: bool = True


class ProcedureLookupResult(BaseModel):
    """Node C outcome."""

    found: bool
    cpt_code: Optional[str] = None
    cpt_description: Optional[str] = None
    is_unlisted_procedure: bool = False
    suggested_modifiers: List[str] = Field(default_factory=list)
    matched_by: Optional[str] = Field(None, description="'code' or 'description'")


class EMDocumentationElements(BaseModel):
    """Documentation elements that drive E/M leveling."""

    history_of_present_illness: bool = False
    review_of_systems: bool = False
    past_family_social_history: bool = False
    examination_performed: bool = False
    examination_detail: str = "problem_focused"
    number_of_diagnoses: int = Field(0, ge=0)
    amount_of_data: DataAmount = DataAmount.LIMITED
    risk_level: RiskLevel = RiskLevel.LOW
    total_time: Optional[int] = Field(None, ge=0)
    documentation_completeness_score: int = Field(75, ge=0, le=100)


class EMEvaluationResult(BaseModel):
    """Node D outcome."""

    level_determined: bool
    em_level: Optional[int] = Field(None, ge=1, le=5)
    em_code: Optional[str] = None
    new_patient: bool = False
    time_based_coding: bool = False
    mdm_based_coding: bool = False
    mdm_level: Optional[int] = None
    documentation_score: int = 0
    missing_elements: List[str] = Field(default_factory=list)


class ProlongedServiceResult(BaseModel):
    """Add-on time beyond the base allotment of a time-qualified E/M code."""

    applies: bool = False
    units: int = 0
    extra_time: int = 0
    additional_cpt: Optional[str] = None


class ModifierDecision(BaseModel):
    """Node E outcome."""

    modifiers_applied: List[str] = Field(default_factory=list)
    modifier_rationale: Dict[str, str] = Field(default_factory=dict)
    special_circumstances: List[str] = Field(default_factory=list)
    prolonged_services: Optional[ProlongedServiceResult] = None


class CodeCombination(BaseModel):
    """Medical-necessity verdict for one procedure/diagnosis pair."""

    cpt: str
    icd10: str
    valid: bool
    reason: str


class MedicalNecessityCheck(BaseModel):
    is_valid: bool
    cpt_code: str
    icd10_codes: List[str]
    valid_combinations: List[CodeCombination] = Field(default_factory=list)
    review_recommended: bool = False
    ncd_reference: Optional[str] = None
    lcd_reference: Optional[str] = None


class FeeScheduleResult(BaseModel):
    """Node F outcome. ``applied_rate`` is always populated."""

    fee_found: bool
    applied_rate: float = Field(..., ge=0)
    rate_source: RateSource
    contracted_rate: Optional[float] = None
    chargemaster_rate: Optional[float] = None
    allowed_amount: Optional[float] = None
    total_rvu: Optional[float] = None
    payer_multiplier: Optional[float] = None
    notes: List[str] = Field(default_factory=list)


class DiagnosisAssignmentResult(BaseModel):
    """Ordered diagnosis codes for the claim, primary first. Never empty."""

    icd10_codes: List[str] = Field(..., min_length=1)
    used_fallback: bool = False
    unresolved_terms: List[str] = Field(default_factory=list)
    unknown_codes: List[str] = Field(default_factory=list, description="Explicit codes missing from the code set")
