"""
Eligibility and authorization check (Node A).
"""

from .reference_data import ReferenceDataPort
from .stage_models import EligibilityCheckResult


class EligibilityChecker:
    """
    Confirms the patient has active coverage with the billed payer.

    Prior authorization is not integrated: unless ``require_authorization``
    is set, eligible patients are treated as authorized. Setting it marks
    authorization as required and not obtained.
    """

    def __init__(self, reference_data: ReferenceDataPort, require_authorization: bool = False):
        self.reference_data = reference_data
        self.require_authorization = require_authorization

    def check(self, patient_id: str, payer_id: str) -> EligibilityCheckResult:
        """
        Validate patient eligibility with payer.

        Args:
            patient_id: Patient identifier
            payer_id: Payer billed for the encounter

        Returns:
            EligibilityCheckResult with a denial reason when ineligible
        """
        patient = self.reference_data.get_patient_insurance(patient_id, payer_id)

        if patient is None:
            return EligibilityCheckResult(eligible=False, denial_reason="Patient not found in system")

        if (patient.insurance_status or "").lower() != "active":
            return EligibilityCheckResult(eligible=False, denial_reason="Insurance policy is not active")

        if patient.insurance_payer_id != payer_id:
            return EligibilityCheckResult(
                eligible=False,
                denial_reason="Payer mismatch with patient insurance",
            )

        return EligibilityCheckResult(
            eligible=True,
            authorized=not self.require_authorization,
            authorization_required=self.require_authorization,
            plan_name=patient.plan_name or "Active Coverage",
        )
