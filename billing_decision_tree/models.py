"""
Data models for encounters, claim lines and decision tree results.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EncounterType(str, Enum):
    """Kind of clinical encounter being billed."""

    OFFICE_VISIT = "office_visit"
    TELEHEALTH = "telehealth"
    SURGERY = "surgery"
    PROCEDURE = "procedure"
    LAB = "lab"
    RADIOLOGY = "radiology"
    EMERGENCY = "emergency"
    INPATIENT = "inpatient"
    CONSULTATION = "consultation"


class DecisionResult(str, Enum):
    """Outcome tag recorded on each decision node."""

    PROCEED = "proceed"
    DENY = "deny"
    MANUAL_REVIEW = "manual_review"
    COMPLETE = "complete"


class PipelineState(str, Enum):
    """States of the decision tree run."""

    START = "start"
    ELIGIBILITY = "eligibility"
    CLASSIFICATION = "classification"
    PROCEDURE_LOOKUP = "procedure_lookup"
    EM_LEVELING = "em_leveling"
    PROLONGED_SERVICE_CHECK = "prolonged_service_check"
    MODIFIER_RESOLUTION = "modifier_resolution"
    DIAGNOSIS_ASSIGNMENT = "diagnosis_assignment"
    MEDICAL_NECESSITY = "medical_necessity"
    FEE_RESOLUTION = "fee_resolution"
    COMPLETE = "complete"
    DENIED = "denied"
    MANUAL_REVIEW = "manual_review"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DataAmount(str, Enum):
    """Amount and complexity of data reviewed (MDM data category)."""

    MINIMAL = "minimal"
    LIMITED = "limited"
    MODERATE = "moderate"
    EXTENSIVE = "extensive"


class RiskLevel(str, Enum):
    """Risk of complications (MDM risk category)."""

    MINIMAL = "minimal"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class ServiceCircumstance(str, Enum):
    """Circumstances that may require a procedure modifier."""

    TELEHEALTH = "telehealth"
    TELEHEALTH_ASYNC = "telehealth_async"
    TELEHEALTH_GT = "telehealth_gt"
    EM_WITH_PROCEDURE = "em_with_procedure"
    PROFESSIONAL_COMPONENT = "professional_component"
    TECHNICAL_COMPONENT = "technical_component"
    DISTINCT_PROCEDURE = "distinct_procedure"
    BILATERAL = "bilateral"
    LEFT_SIDE = "left_side"
    RIGHT_SIDE = "right_side"
    REPEAT_SAME_PHYSICIAN = "repeat_same_physician"
    REPEAT_DIFFERENT_PHYSICIAN = "repeat_different_physician"
    REDUCED_SERVICE = "reduced_service"
    DISCONTINUED = "discontinued"
    ASSISTANT_SURGEON = "assistant_surgeon"


def _normalize_code(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().upper()
    return v or None


class PresentingDiagnosis(BaseModel):
    """A diagnosis documented for the encounter, as a term, an ICD-10 code, or both."""

    model_config = ConfigDict(frozen=True)

    term: Optional[str] = Field(None, description="Free-text diagnosis term")
    icd10_code: Optional[str] = Field(None, description="Explicit ICD-10-CM code")

    @field_validator('icd10_code')
    @classmethod
    def validate_icd10_code(cls, v: Optional[str]) -> Optional[str]:
        """Normalize ICD-10 code."""
        return _normalize_code(v)


class ProcedurePerformed(BaseModel):
    """A procedure documented for the encounter."""

    model_config = ConfigDict(frozen=True)

    description: Optional[str] = Field(None, description="Procedure description")
    cpt_code: Optional[str] = Field(None, description="Explicit CPT or HCPCS code")
    modifiers: Tuple[str, ...] = Field(
        default=(),
        description="Modifiers documented by the clinician for this procedure"
    )

    @field_validator('cpt_code')
    @classmethod
    def validate_cpt_code(cls, v: Optional[str]) -> Optional[str]:
        """Normalize procedure code."""
        return _normalize_code(v)

    @field_validator('modifiers')
    @classmethod
    def validate_modifiers(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Normalize modifiers to uppercase and drop blanks."""
        return tuple(m.strip().upper() for m in v if m and m.strip())


class MDMComplexityHint(BaseModel):
    """Documented medical decision making elements that override derived values."""

    model_config = ConfigDict(frozen=True)

    amount_of_data: Optional[DataAmount] = None
    risk_level: Optional[RiskLevel] = None


class EncounterInput(BaseModel):
    """
    A single clinical encounter to be coded.

    The model is frozen: the decision tree never mutates its input.
    """

    model_config = ConfigDict(frozen=True)

    encounter_id: Optional[str] = Field(None, description="Caller's encounter identifier (logging only)")
    patient_id: str = Field(..., description="Patient identifier")
    payer_id: str = Field(..., description="Payer identifier")
    provider_id: str = Field(..., description="Rendering provider identifier")
    policy_status: Optional[str] = Field(None, description="Caller-reported policy status (logged only)")
    encounter_type: EncounterType
    service_date: date
    chief_complaint: Optional[str] = None
    presenting_diagnoses: Tuple[PresentingDiagnosis, ...] = ()
    procedures_performed: Tuple[ProcedurePerformed, ...] = ()
    time_spent: Optional[int] = Field(None, description="Total time in minutes", ge=0)
    place_of_service: str = Field("11", description="Two-digit place of service code")
    mdm_complexity: Optional[MDMComplexityHint] = None
    additional_circumstances: Tuple[ServiceCircumstance, ...] = ()

    @field_validator('patient_id', 'payer_id', 'provider_id')
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Identifier cannot be empty")
        return v.strip()

    @field_validator('place_of_service', mode='before')
    @classmethod
    def validate_place_of_service(cls, v: Optional[str]) -> str:
        """Default to office and require a two-digit code."""
        if v is None or not str(v).strip():
            return "11"
        v = str(v).strip()
        if not v.isdigit() or len(v) != 2:
            raise ValueError("Place of service must be a 2-digit code")
        return v


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecisionNode(BaseModel):
    """One audit trail entry: the question a stage answered and why."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    node_name: str
    question: str
    answer: str
    result: DecisionResult
    rationale: str
    timestamp: datetime = Field(default_factory=_utcnow)


class ValidationIssue(BaseModel):
    """A blocking error or non-blocking warning raised during a run."""

    severity: Severity
    code: str = Field(..., description="Machine-readable issue code")
    message: str
    field: Optional[str] = None
    suggestion: Optional[str] = None


class BillableClaimLine(BaseModel):
    """A claim line ready for submission."""

    cpt_code: str = Field(..., description="CPT or HCPCS procedure code")
    cpt_modifiers: List[str] = Field(default_factory=list)
    icd10_codes: List[str] = Field(..., description="Diagnosis codes, primary first", min_length=1)
    billed_amount: float = Field(..., ge=0)
    allowed_amount: Optional[float] = None
    payer_id: str
    service_date: date
    units: int = Field(1, ge=1)
    place_of_service: str
    rendering_provider_id: str
    medical_necessity_validated: bool = False


class DecisionTreeResult(BaseModel):
    """Outcome of one decision tree run. The caller persists it."""

    success: bool
    claim_line: Optional[BillableClaimLine] = None
    additional_claim_lines: List[BillableClaimLine] = Field(default_factory=list)
    decisions: Tuple[DecisionNode, ...] = ()
    validation_errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    requires_manual_review: bool = False
    manual_review_reason: Optional[str] = None
    final_state: PipelineState = PipelineState.COMPLETE

    @property
    def all_claim_lines(self) -> List[BillableClaimLine]:
        """Primary line followed by any additional lines."""
        if self.claim_line is None:
            return []
        return [self.claim_line] + list(self.additional_claim_lines)

    @property
    def total_billed(self) -> float:
        return sum(line.billed_amount for line in self.all_claim_lines)
