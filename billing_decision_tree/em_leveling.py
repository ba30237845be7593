"""
Evaluation and Management (E/M) level determination.

Implements the 2021+ CMS office E/M guidelines:
- Time-based leveling when at least 10 minutes of total time is documented
- Medical Decision Making (MDM) leveling otherwise, using problems, data
  and risk ("2 of 3" categories)

The resulting level is mapped to a CPT code through ``EM_CODE_TABLE``,
keyed by facility class, patient status and level.
"""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .logging_config import get_logger
from .models import DataAmount, EncounterInput, EncounterType, RiskLevel
from .reference_data import ReferenceDataPort
from .stage_models import EMDocumentationElements, EMEvaluationResult

logger = get_logger(__name__)

TIME_BASED_MINIMUM_MINUTES = 10


class FacilityClass(str, Enum):
    OFFICE = "office"
    INPATIENT = "inpatient"
    EMERGENCY = "emergency"
    NURSING_FACILITY = "nursing_facility"


class PatientStatus(str, Enum):
    NEW = "new"
    ESTABLISHED = "established"


# Place of service -> facility class. Unlisted codes bill as office.
POS_FACILITY_CLASS: Dict[str, FacilityClass] = {
    "02": FacilityClass.OFFICE,
    "11": FacilityClass.OFFICE,
    "12": FacilityClass.OFFICE,
    "22": FacilityClass.OFFICE,
    "21": FacilityClass.INPATIENT,
    "23": FacilityClass.EMERGENCY,
    "31": FacilityClass.NURSING_FACILITY,
    "32": FacilityClass.NURSING_FACILITY,
}


def _build_em_code_table() -> Dict[Tuple[FacilityClass, PatientStatus, int], str]:
    new, est = PatientStatus.NEW, PatientStatus.ESTABLISHED
    table: Dict[Tuple[FacilityClass, PatientStatus, int], str] = {}

    office_new = {1: "99202", 2: "99202", 3: "99203", 4: "99204", 5: "99205"}  # 99201 deleted in 2021
    office_est = {1: "99211", 2: "99212", 3: "99213", 4: "99214", 5: "99215"}
    # Hospital care tops out at level 3 (high MDM)
    initial_hospital = {1: "99221", 2: "99222", 3: "99223", 4: "99223", 5: "99223"}
    subsequent_hospital = {1: "99231", 2: "99232", 3: "99233", 4: "99233", 5: "99233"}
    # Emergency department has no new/established distinction
    emergency = {1: "99281", 2: "99282", 3: "99283", 4: "99284", 5: "99285"}
    initial_nursing = {1: "99304", 2: "99305", 3: "99306", 4: "99306", 5: "99306"}
    subsequent_nursing = {1: "99307", 2: "99308", 3: "99309", 4: "99310", 5: "99310"}

    for level in range(1, 6):
        table[(FacilityClass.OFFICE, new, level)] = office_new[level]
        table[(FacilityClass.OFFICE, est, level)] = office_est[level]
        table[(FacilityClass.INPATIENT, new, level)] = initial_hospital[level]
        table[(FacilityClass.INPATIENT, est, level)] = subsequent_hospital[level]
        table[(FacilityClass.EMERGENCY, new, level)] = emergency[level]
        table[(FacilityClass.EMERGENCY, est, level)] = emergency[level]
        table[(FacilityClass.NURSING_FACILITY, new, level)] = initial_nursing[level]
        table[(FacilityClass.NURSING_FACILITY, est, level)] = subsequent_nursing[level]
    return table


EM_CODE_TABLE = _build_em_code_table()

DATA_COMPLEXITY_LEVELS: Dict[DataAmount, int] = {
    DataAmount.MINIMAL: 1,
    DataAmount.LIMITED: 2,
    DataAmount.MODERATE: 3,
    DataAmount.EXTENSIVE: 4,
}

RISK_COMPLEXITY_LEVELS: Dict[RiskLevel, int] = {
    RiskLevel.MINIMAL: 1,
    RiskLevel.LOW: 2,
    RiskLevel.MODERATE: 3,
    RiskLevel.HIGH: 4,
}


def facility_class_for(pos_code: Optional[str]) -> FacilityClass:
    return POS_FACILITY_CLASS.get(pos_code or "11", FacilityClass.OFFICE)


def generate_em_code(level: int, new_patient: bool, pos_code: Optional[str]) -> Optional[str]:
    """
    Look up the E/M code for a level, patient status and place of service.

    Returns:
        CPT code, or None when the combination is not in the table
    """
    status = PatientStatus.NEW if new_patient else PatientStatus.ESTABLISHED
    return EM_CODE_TABLE.get((facility_class_for(pos_code), status, level))


def is_em_code(cpt_code: Optional[str]) -> bool:
    """Check if CPT code is an E/M code (99201-99499)."""
    if not cpt_code or not cpt_code.isdigit():
        return False
    return 99201 <= int(cpt_code) <= 99499


def determine_time_based_level(time_spent: int, new_patient: bool) -> Tuple[int, List[str]]:
    """
    Map total visit time to an E/M level.

    New patient (99202-99205): 15-29, 30-44, 45-59, 60+ minutes.
    Established (99211-99215): <10, 10-19, 20-29, 30-39, 40+ minutes.

    Returns:
        Tuple of (level, missing documentation elements)
    """
    missing: List[str] = []
    if new_patient:
        if time_spent >= 60:
            level = 5
        elif time_spent >= 45:
            level = 4
        elif time_spent >= 30:
            level = 3
        elif time_spent >= 15:
            level = 2
        else:
            missing.append("Insufficient time documented for new patient visit")
            level = 2
    else:
        if time_spent >= 40:
            level = 5
        elif time_spent >= 30:
            level = 4
        elif time_spent >= 20:
            level = 3
        elif time_spent >= 10:
            level = 2
        else:
            level = 1  # 99211 - minimal service
    return level, missing


def assess_risk_level(diagnosis_count: int) -> RiskLevel:
    """Estimate risk from the number of presenting diagnoses."""
    if diagnosis_count >= 3:
        return RiskLevel.HIGH
    if diagnosis_count >= 2:
        return RiskLevel.MODERATE
    if diagnosis_count >= 1:
        return RiskLevel.LOW
    return RiskLevel.MINIMAL


def assess_problem_complexity(documentation: EMDocumentationElements) -> int:
    """Number and complexity of problems addressed."""
    num_dx = documentation.number_of_diagnoses
    if num_dx == 0:
        return 1
    if num_dx == 1:
        return 2
    if num_dx == 2:
        return 3
    # 3+ problems reach high complexity only with high risk
    if documentation.risk_level == RiskLevel.HIGH:
        return 4
    return 3


def assess_data_complexity(documentation: EMDocumentationElements) -> int:
    return DATA_COMPLEXITY_LEVELS.get(documentation.amount_of_data, 2)


def assess_risk_complexity(documentation: EMDocumentationElements) -> int:
    return RISK_COMPLEXITY_LEVELS.get(documentation.risk_level, 2)


def combine_mdm_levels(problem_level: int, data_level: int, risk_level: int) -> int:
    """
    Combine the three MDM category levels.

    Returns the median: the level two categories agree on, or the middle
    value when all three differ.
    """
    return sorted([problem_level, data_level, risk_level])[1]


def calculate_mdm_level(documentation: EMDocumentationElements) -> int:
    """Calculate the MDM level (1-4) from documentation elements."""
    return combine_mdm_levels(
        assess_problem_complexity(documentation),
        assess_data_complexity(documentation),
        assess_risk_complexity(documentation),
    )


def build_documentation(encounter: EncounterInput) -> EMDocumentationElements:
    """Derive E/M documentation elements from an encounter."""
    num_dx = len(encounter.presenting_diagnoses)
    hint = encounter.mdm_complexity

    amount_of_data = hint.amount_of_data if hint and hint.amount_of_data else None
    if amount_of_data is None:
        amount_of_data = DataAmount.MODERATE if num_dx > 2 else DataAmount.LIMITED

    risk_level = hint.risk_level if hint and hint.risk_level else None
    if risk_level is None:
        risk_level = assess_risk_level(num_dx)

    return EMDocumentationElements(
        history_of_present_illness=bool(encounter.chief_complaint),
        examination_performed=encounter.encounter_type != EncounterType.TELEHEALTH,
        number_of_diagnoses=num_dx,
        amount_of_data=amount_of_data,
        risk_level=risk_level,
        total_time=encounter.time_spent,
    )


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return day.replace(year=day.year - years, day=28)


class EMLevelEvaluator:
    """
    Determines the E/M level and code for an encounter (Node D).
    """

    def __init__(self, reference_data: ReferenceDataPort, lookback_years: int = 3):
        self.reference_data = reference_data
        self.lookback_years = lookback_years

    def is_new_patient(self, patient_id: str, provider_id: str, service_date: date) -> bool:
        """
        New patient = no encounter with this provider in the lookback window.

        Lookup failures assume an established patient to avoid overbilling.
        """
        since = _years_before(service_date, self.lookback_years)
        try:
            return not self.reference_data.has_prior_encounter(patient_id, provider_id, since, service_date)
        except Exception as e:
            logger.warning(
                "New patient check failed, assuming established patient",
                extra={"patient_id": patient_id, "provider_id": provider_id, "error": str(e)},
            )
            return False

    def evaluate(
        self,
        encounter: EncounterInput,
        documentation: Optional[EMDocumentationElements] = None,
    ) -> EMEvaluationResult:
        """
        Evaluate the E/M level for an encounter.

        Args:
            encounter: Encounter being coded
            documentation: Documentation elements; derived from the encounter if omitted

        Returns:
            EMEvaluationResult with the level, code and any missing elements
        """
        if documentation is None:
            documentation = build_documentation(encounter)

        new_patient = self.is_new_patient(
            encounter.patient_id, encounter.provider_id, encounter.service_date
        )
        time_spent = encounter.time_spent
        time_based = time_spent is not None and time_spent >= TIME_BASED_MINIMUM_MINUTES
        mdm_level = None

        if time_based:
            level, missing = determine_time_based_level(time_spent, new_patient)
        else:
            missing = []
            mdm_level = calculate_mdm_level(documentation)
            level = mdm_level
            if level < 2 and new_patient:
                # There is no level 1 new patient code
                level = 2
            if not documentation.history_of_present_illness:
                missing.append("Chief complaint / history of present illness not documented")

        em_code = generate_em_code(level, new_patient, encounter.place_of_service)
        if em_code is None:
            missing.append(
                f"No E/M code for level {level} at POS {encounter.place_of_service}"
            )
            return EMEvaluationResult(
                level_determined=False,
                em_level=level,
                new_patient=new_patient,
                time_based_coding=time_based,
                mdm_based_coding=not time_based,
                mdm_level=mdm_level,
                documentation_score=documentation.documentation_completeness_score,
                missing_elements=missing,
            )

        return EMEvaluationResult(
            level_determined=True,
            em_level=level,
            em_code=em_code,
            new_patient=new_patient,
            time_based_coding=time_based,
            mdm_based_coding=not time_based,
            mdm_level=mdm_level,
            documentation_score=documentation.documentation_completeness_score,
            missing_elements=missing,
        )
