"""
ICD-10 diagnosis code assignment.
"""

from typing import Iterable, List

from .models import PresentingDiagnosis
from .reference_data import ReferenceDataPort
from .stage_models import DiagnosisAssignmentResult

UNSPECIFIED_DIAGNOSIS_CODE = "Z00.00"  # General adult exam without abnormal findings


def assign_diagnosis_codes(
    diagnoses: Iterable[PresentingDiagnosis],
    reference_data: ReferenceDataPort,
    fallback_code: str = UNSPECIFIED_DIAGNOSIS_CODE,
) -> DiagnosisAssignmentResult:
    """
    Map presenting diagnoses to ordered ICD-10 codes.

    Explicit codes are used as given, and any the code set does not know
    are reported so a coder can confirm them. Terms are searched for an active,
    billable code. Terms with no match are reported and dropped. If nothing
    resolves, the fallback code is used so a claim line always has a
    diagnosis.

    Args:
        diagnoses: Presenting diagnoses, primary first
        reference_data: Diagnosis code lookup
        fallback_code: Code used when no diagnosis resolves

    Returns:
        DiagnosisAssignmentResult with de-duplicated codes in presenting order
    """
    codes: List[str] = []
    unresolved: List[str] = []
    unknown: List[str] = []

    for diagnosis in diagnoses:
        code = diagnosis.icd10_code
        if code and code not in unknown and reference_data.get_diagnosis_code(code) is None:
            unknown.append(code)
        if not code and diagnosis.term:
            matches = reference_data.search_diagnosis_codes(diagnosis.term, limit=1)
            if matches:
                code = matches[0].code
            else:
                unresolved.append(diagnosis.term)
        if code and code not in codes:
            codes.append(code)

    if not codes:
        return DiagnosisAssignmentResult(
            icd10_codes=[fallback_code],
            used_fallback=True,
            unresolved_terms=unresolved,
            unknown_codes=unknown,
        )

    return DiagnosisAssignmentResult(icd10_codes=codes, unresolved_terms=unresolved, unknown_codes=unknown)
