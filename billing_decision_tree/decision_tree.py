"""
Billing decision tree.

Provides the primary interface for turning a clinical encounter into a
billable claim line, or deferring it to a human coder.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .classification import classify_service
from .config import DecisionTreeConfig
from .diagnosis import assign_diagnosis_codes
from .eligibility import EligibilityChecker
from .em_leveling import EMLevelEvaluator
from .fee_resolver import FeeResolver
from .logging_config import get_logger
from .medical_necessity import MedicalNecessityValidator
from .models import (
    BillableClaimLine,
    DecisionNode,
    DecisionResult,
    DecisionTreeResult,
    EncounterInput,
    PipelineState,
    Severity,
    ValidationIssue,
)
from .modifiers import detect_circumstances, determine_modifiers
from .procedure_lookup import ProcedureCodeResolver
from .prolonged_services import check_prolonged_services
from .reference_data import InMemoryReferenceData, ReferenceDataPort, create_default_reference_data
from .sdoh import SocialRiskPort, enhance_with_sdoh
from .stage_models import (
    ClassificationType,
    DiagnosisAssignmentResult,
    EligibilityCheckResult,
    EMEvaluationResult,
    FeeScheduleResult,
    MedicalNecessityCheck,
    ModifierDecision,
    ProcedureLookupResult,
    ProlongedServiceResult,
    RateSource,
    ServiceClassification,
)

logger = get_logger(__name__)


@dataclass
class _Run:
    """Mutable state of one run. Decision nodes are only ever appended."""

    encounter: EncounterInput
    state: PipelineState = PipelineState.START
    decisions: List[DecisionNode] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def record(
        self,
        node_id: str,
        node_name: str,
        question: str,
        answer: str,
        result: DecisionResult,
        rationale: str,
    ) -> None:
        node = DecisionNode(
            node_id=node_id,
            node_name=node_name,
            question=question,
            answer=answer,
            result=result,
            rationale=rationale,
        )
        self.decisions.append(node)
        logger.debug(
            "Decision recorded",
            extra={"node_id": node_id, "answer": answer, "result": result.value},
        )

    def warn(self, code: str, message: str, suggestion: Optional[str] = None,
             severity: Severity = Severity.WARNING) -> None:
        self.warnings.append(
            ValidationIssue(severity=severity, code=code, message=message, suggestion=suggestion)
        )


class BillingDecisionTree:
    """
    Main interface for coding encounters into billable claim lines.

    This class orchestrates the decision tree:
    A. Eligibility and authorization
    B. Service classification (procedural vs E/M)
    C. Procedure code lookup, or D. E/M level determination
    Prolonged service check
    E. Modifier determination
    Diagnosis assignment and medical necessity validation
    F. Fee schedule resolution

    Every stage appends a DecisionNode to the audit trail. Stages that cannot
    reach a confident answer defer to manual review; the tree never raises
    to the caller.

    Example:
        >>> tree = BillingDecisionTree()
        >>> encounter = EncounterInput(...)
        >>> result = tree.process_encounter(encounter)
        >>> print(result.claim_line.cpt_code if result.success else result.manual_review_reason)
    """

    def __init__(
        self,
        reference_data: Optional[ReferenceDataPort] = None,
        config: Optional[DecisionTreeConfig] = None,
        social_risk: Optional[SocialRiskPort] = None,
        data_directory: Optional[Path] = None,
    ):
        """
        Initialize the decision tree.

        Args:
            reference_data: Optional reference data port. If not provided,
                           uses default sample data.
            config: Optional configuration; defaults to DecisionTreeConfig()
            social_risk: Optional social risk source for SDOH enrichment
            data_directory: Optional directory of reference tables, used
                          when reference_data is not provided
        """
        if reference_data is not None:
            self.reference_data = reference_data
        elif data_directory:
            self.reference_data = InMemoryReferenceData()
            self.reference_data.load_from_directory(data_directory)
        else:
            self.reference_data = create_default_reference_data()

        self.config = config or DecisionTreeConfig()
        self.social_risk = social_risk

        self.eligibility_checker = EligibilityChecker(
            self.reference_data, require_authorization=self.config.require_authorization
        )
        self.procedure_resolver = ProcedureCodeResolver(self.reference_data)
        self.em_evaluator = EMLevelEvaluator(
            self.reference_data, lookback_years=self.config.new_patient_lookback_years
        )
        self.necessity_validator = MedicalNecessityValidator(self.reference_data)
        self.fee_resolver = FeeResolver(self.reference_data, self.config)

    def process_encounter(self, encounter: EncounterInput) -> DecisionTreeResult:
        """
        Process an encounter through the decision tree.

        Args:
            encounter: Encounter to code

        Returns:
            DecisionTreeResult. Unexpected errors are returned as a
            PROCESSING_ERROR result flagged for manual review.
        """
        run = _Run(encounter=encounter)
        logger.info(
            "Processing encounter",
            extra={
                "encounter_id": encounter.encounter_id,
                "patient_id": encounter.patient_id,
                "encounter_type": encounter.encounter_type.value,
                "payer_id": encounter.payer_id,
            },
        )

        try:
            result = self._run(run)
        except Exception as e:
            logger.exception(
                "Failed to process billing encounter",
                extra={
                    "encounter_id": encounter.encounter_id,
                    "patient_id": encounter.patient_id,
                    "state": run.state.value,
                },
            )
            result = DecisionTreeResult(
                success=False,
                decisions=tuple(run.decisions),
                validation_errors=[
                    ValidationIssue(
                        severity=Severity.ERROR,
                        code="PROCESSING_ERROR",
                        message=f"Error processing encounter: {e}",
                    )
                ],
                warnings=run.warnings,
                requires_manual_review=True,
                manual_review_reason=f"System error: {e}",
                final_state=PipelineState.MANUAL_REVIEW,
            )

        logger.info(
            "Encounter processed",
            extra={
                "encounter_id": encounter.encounter_id,
                "success": result.success,
                "requires_manual_review": result.requires_manual_review,
                "final_state": result.final_state.value,
            },
        )
        return result

    def process_encounters(
        self,
        encounters: Iterable[EncounterInput],
        max_workers: Optional[int] = None,
    ) -> List[DecisionTreeResult]:
        """
        Process multiple encounters.

        Runs share no mutable state, so they may execute on a thread pool.

        Args:
            encounters: Encounters to process
            max_workers: Thread pool size; runs sequentially when not above 1

        Returns:
            Results in the same order as the encounters
        """
        encounters = list(encounters)
        if not max_workers or max_workers <= 1:
            return [self.process_encounter(encounter) for encounter in encounters]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.process_encounter, encounters))

    def enhance_with_sdoh(self, result: DecisionTreeResult, patient_id: str) -> DecisionTreeResult:
        """
        Enrich a successful result with SDOH Z-codes and CCM eligibility.

        Raises:
            ValueError: If the tree was built without a social risk source
        """
        if self.social_risk is None:
            raise ValueError("No social risk source configured for SDOH enrichment")
        return enhance_with_sdoh(result, patient_id, self.social_risk)

    def _run(self, run: _Run) -> DecisionTreeResult:
        encounter = run.encounter

        # NODE A: Eligibility and Authorization
        run.state = PipelineState.ELIGIBILITY
        eligibility = self._execute_node_a(run)

        if not eligibility.eligible:
            return self._deny(
                run,
                code="INELIGIBLE",
                message=eligibility.denial_reason or "Patient not eligible for service",
                suggestion="Verify patient insurance status and coverage dates",
            )

        if eligibility.authorization_required and not eligibility.authorized:
            return self._deny(
                run,
                code="AUTHORIZATION_REQUIRED",
                message="Prior authorization required but not obtained",
                suggestion="Submit prior authorization request to payer",
            )

        # NODE B: Service Classification
        run.state = PipelineState.CLASSIFICATION
        classification = self._execute_node_b(run)

        if not self._classification_confident(classification):
            if not classification.place_of_service_valid:
                run.warn(
                    "INVALID_PLACE_OF_SERVICE",
                    classification.rationale,
                    "Correct the place of service or encounter type",
                )
                return self._defer(run, "Invalid place of service for encounter type")
            run.warn(
                "CLASSIFICATION_UNRESOLVED",
                classification.rationale,
                "Classify the encounter manually",
            )
            return self._defer(run, "Complex encounter requires manual classification")

        is_em = classification.classification_type == ClassificationType.EVALUATION_MANAGEMENT
        suggested_modifiers: List[str] = []

        if not is_em:
            # NODE C: Procedure Lookup
            run.state = PipelineState.PROCEDURE_LOOKUP
            procedure = self._execute_node_c(run)
            if not procedure.found or procedure.is_unlisted_procedure:
                run.warn(
                    "UNLISTED_PROCEDURE",
                    "Procedure not found in CPT reference table",
                    "Use appropriate unlisted procedure code or consult coding specialist",
                )
                return self._defer(run, "Unlisted procedure code - requires manual review")
            cpt_code = procedure.cpt_code
            suggested_modifiers = procedure.suggested_modifiers
        else:
            # NODE D: E/M Level Determination
            run.state = PipelineState.EM_LEVELING
            em_result = self._execute_node_d(run)
            if not em_result.level_determined:
                run.warn(
                    "EM_LEVEL_UNDETERMINED",
                    "E/M level could not be determined",
                    f"Missing documentation elements: {', '.join(em_result.missing_elements)}",
                )
                return self._defer(run, "Unable to determine E/M level - insufficient documentation")
            for element in em_result.missing_elements:
                run.warn("EM_DOCUMENTATION_INCOMPLETE", element, "Complete the visit documentation")
            cpt_code = em_result.em_code

        # Prolonged services are reported on the modifier node
        run.state = PipelineState.PROLONGED_SERVICE_CHECK
        prolonged = check_prolonged_services(
            cpt_code,
            encounter.time_spent,
            is_em,
            add_on_code=self.config.prolonged_service_code,
            increment_minutes=self.config.prolonged_service_increment_minutes,
            max_units=self.config.max_prolonged_units,
        )

        # NODE E: Modifiers
        run.state = PipelineState.MODIFIER_RESOLUTION
        modifier_result = self._execute_node_e(run, cpt_code, prolonged)
        modifiers = list(suggested_modifiers)
        for modifier in modifier_result.modifiers_applied:
            if modifier not in modifiers:
                modifiers.append(modifier)

        run.state = PipelineState.DIAGNOSIS_ASSIGNMENT
        diagnoses = self._assign_diagnoses(run)
        icd10_codes = diagnoses.icd10_codes

        run.state = PipelineState.MEDICAL_NECESSITY
        necessity = self._check_medical_necessity(run, cpt_code, icd10_codes)
        if necessity is not None and not necessity.is_valid:
            return self._deny(
                run,
                code="MEDICAL_NECESSITY_FAILED",
                message="CPT and ICD-10 combination does not meet medical necessity requirements",
                suggestion="Review diagnosis codes and ensure they support the procedure",
            )

        # NODE F: Fee Schedule
        run.state = PipelineState.FEE_RESOLUTION
        fee = self._execute_node_f(run, cpt_code)

        claim_line = BillableClaimLine(
            cpt_code=cpt_code,
            cpt_modifiers=modifiers,
            icd10_codes=icd10_codes,
            billed_amount=fee.applied_rate,
            allowed_amount=fee.allowed_amount,
            payer_id=encounter.payer_id,
            service_date=encounter.service_date,
            units=1,
            place_of_service=encounter.place_of_service,
            rendering_provider_id=encounter.provider_id,
            medical_necessity_validated=necessity is not None,
        )

        additional_lines: List[BillableClaimLine] = []
        if prolonged.applies and prolonged.additional_cpt:
            additional_lines.append(self._prolonged_service_line(run, prolonged, icd10_codes, claim_line))

        run.state = PipelineState.COMPLETE
        summary = f"Successfully generated claim line: {cpt_code} with {len(icd10_codes)} diagnosis codes"
        if additional_lines:
            summary += f" + {len(additional_lines)} additional lines (prolonged services)"
        run.record(
            "FINAL",
            "Claim Line Generation",
            "Generate final billable claim line?",
            "Yes",
            DecisionResult.COMPLETE,
            summary,
        )

        return DecisionTreeResult(
            success=True,
            claim_line=claim_line,
            additional_claim_lines=additional_lines,
            decisions=tuple(run.decisions),
            warnings=run.warnings,
            requires_manual_review=False,
            final_state=PipelineState.COMPLETE,
        )

    def _execute_node_a(self, run: _Run) -> EligibilityCheckResult:
        encounter = run.encounter
        question = "Is the patient eligible and service authorized?"

        if not self.config.enable_eligibility_check:
            run.record("NODE_A", "Eligibility and Authorization Check", question,
                       "Skipped", DecisionResult.PROCEED, "Eligibility check disabled by configuration")
            return EligibilityCheckResult(eligible=True, authorized=True)

        eligibility = self.eligibility_checker.check(encounter.patient_id, encounter.payer_id)

        if not eligibility.eligible:
            answer, result = "No - Ineligible", DecisionResult.DENY
            rationale = eligibility.denial_reason or "Patient not eligible"
        elif eligibility.authorization_required and not eligibility.authorized:
            answer, result = "No - Authorization required", DecisionResult.DENY
            rationale = "Prior authorization required but not obtained"
        else:
            answer, result = "Yes - Eligible", DecisionResult.PROCEED
            rationale = "Patient has active coverage with payer"

        run.record("NODE_A", "Eligibility and Authorization Check", question, answer, result, rationale)
        logger.info(
            "Eligibility checked",
            extra={
                "patient_id": encounter.patient_id,
                "payer_id": encounter.payer_id,
                "eligible": eligibility.eligible,
                "reported_policy_status": encounter.policy_status,
            },
        )
        return eligibility

    def _execute_node_b(self, run: _Run) -> ServiceClassification:
        classification = classify_service(run.encounter)
        confident = self._classification_confident(classification)
        run.record(
            "NODE_B",
            "Service Classification",
            "Is the service procedural or evaluation/management?",
            f"{classification.classification_type.value} ({classification.confidence}% confidence)",
            DecisionResult.PROCEED if confident else DecisionResult.MANUAL_REVIEW,
            classification.rationale,
        )
        return classification

    def _execute_node_c(self, run: _Run) -> ProcedureLookupResult:
        procedures = run.encounter.procedures_performed
        lookup = self.procedure_resolver.lookup(procedures[0] if procedures else None)
        listed = lookup.found and not lookup.is_unlisted_procedure
        run.record(
            "NODE_C",
            "Procedure CPT Lookup",
            "Is the procedure found in CPT cross-reference table?",
            f"Yes - {lookup.cpt_code}" if listed else "No",
            DecisionResult.PROCEED if listed else DecisionResult.MANUAL_REVIEW,
            f"Matched procedure to CPT {lookup.cpt_code}: {lookup.cpt_description}"
            if listed else "Procedure not found in reference table",
        )
        return lookup

    def _execute_node_d(self, run: _Run) -> EMEvaluationResult:
        em_result = self.em_evaluator.evaluate(run.encounter)
        if em_result.level_determined:
            basis = "time" if em_result.time_based_coding else f"MDM level {em_result.mdm_level}"
            status = "new" if em_result.new_patient else "established"
            rationale = (
                f"E/M Level {em_result.em_level} determined ({em_result.em_code}) by {basis}, "
                f"{status} patient. Documentation score: {em_result.documentation_score}%"
            )
        else:
            rationale = f"Unable to determine level. Missing: {', '.join(em_result.missing_elements)}"
        run.record(
            "NODE_D",
            "E/M Level Determination",
            "Does documentation meet required elements for E/M level?",
            f"Yes - Level {em_result.em_level}" if em_result.level_determined else "No",
            DecisionResult.PROCEED if em_result.level_determined else DecisionResult.MANUAL_REVIEW,
            rationale,
        )
        return em_result

    def _execute_node_e(self, run: _Run, cpt_code: str, prolonged: ProlongedServiceResult) -> ModifierDecision:
        circumstances = detect_circumstances(cpt_code, run.encounter)
        decision = determine_modifiers(cpt_code, circumstances, prolonged)

        applied = decision.modifiers_applied
        prolonged_note = ""
        if prolonged.applies:
            prolonged_note = f"{prolonged.additional_cpt} x{prolonged.units}"

        if applied or prolonged.applies:
            answer = "Yes - " + ", ".join(applied)
            rationale = "Applied modifiers: " + ", ".join(
                f"{mod} ({reason})" for mod, reason in decision.modifier_rationale.items()
            )
            if prolonged.applies:
                answer += f" + Prolonged ({prolonged_note})"
                rationale += (
                    f". Prolonged services: +{prolonged.units * self.config.prolonged_service_increment_minutes}"
                    f" minutes ({prolonged_note})"
                )
        else:
            answer, rationale = "No", "No modifiers required"

        run.record(
            "NODE_E",
            "Modifier Determination",
            "Are there special circumstances requiring modifiers?",
            answer,
            DecisionResult.PROCEED,
            rationale,
        )
        return decision

    def _assign_diagnoses(self, run: _Run) -> DiagnosisAssignmentResult:
        diagnoses = assign_diagnosis_codes(
            run.encounter.presenting_diagnoses,
            self.reference_data,
            fallback_code=self.config.unspecified_diagnosis_code,
        )

        for term in diagnoses.unresolved_terms:
            run.warn("DIAGNOSIS_TERM_UNRESOLVED", f'No billable ICD-10 code found for "{term}"',
                     "Add the ICD-10 code to the encounter", severity=Severity.INFO)

        for code in diagnoses.unknown_codes:
            run.warn("DIAGNOSIS_CODE_UNKNOWN", f"ICD-10 code {code} not found in the diagnosis code set",
                     "Confirm the code is valid for the date of service", severity=Severity.INFO)

        if diagnoses.used_fallback:
            run.warn("UNSPECIFIED_DIAGNOSIS_FALLBACK", "No diagnosis could be coded; using unspecified code",
                     "Document the diagnoses supporting this service")
            rationale = f"No presenting diagnosis resolved; fell back to {diagnoses.icd10_codes[0]}"
        else:
            rationale = f"Assigned {len(diagnoses.icd10_codes)} ICD-10 codes, primary {diagnoses.icd10_codes[0]}"

        run.record(
            "DX_ASSIGNMENT",
            "Diagnosis Code Assignment",
            "Can the presenting diagnoses be coded in ICD-10?",
            ", ".join(diagnoses.icd10_codes),
            DecisionResult.PROCEED,
            rationale,
        )
        return diagnoses

    def _check_medical_necessity(
        self, run: _Run, cpt_code: str, icd10_codes: List[str]
    ) -> Optional[MedicalNecessityCheck]:
        question = "Do the diagnoses support medical necessity for the procedure?"

        if not self.config.enable_medical_necessity_check:
            run.record("MEDICAL_NECESSITY", "Medical Necessity Validation", question,
                       "Skipped", DecisionResult.PROCEED, "Medical necessity check disabled by configuration")
            return None

        check = self.necessity_validator.validate(cpt_code, icd10_codes)

        if check.review_recommended:
            run.warn("MEDICAL_NECESSITY_REVIEW_RECOMMENDED",
                     f"No coverage rules on file for {cpt_code}",
                     "Confirm coverage with the payer policy", severity=Severity.INFO)

        references = [ref for ref in (check.ncd_reference, check.lcd_reference) if ref]
        rationale = "; ".join(f"{c.icd10}: {c.reason}" for c in check.valid_combinations)
        if references:
            rationale += f" [{', '.join(references)}]"

        run.record(
            "MEDICAL_NECESSITY",
            "Medical Necessity Validation",
            question,
            "Yes" if check.is_valid else "No",
            DecisionResult.PROCEED if check.is_valid else DecisionResult.DENY,
            rationale,
        )
        return check

    def _execute_node_f(self, run: _Run, cpt_code: str) -> FeeScheduleResult:
        encounter = run.encounter
        fee = self.fee_resolver.lookup_fee(cpt_code, encounter.payer_id, encounter.place_of_service)

        if fee.rate_source in (RateSource.CHARGEMASTER, RateSource.DEFAULT):
            run.warn("FEE_FALLBACK", f"No contracted or RVU-based rate for {cpt_code}; "
                     f"applied {fee.rate_source.value} rate", severity=Severity.INFO)

        run.record(
            "NODE_F",
            "Fee Schedule Lookup",
            "Is service covered by payer fee schedule or contract?",
            f"Yes - ${fee.applied_rate:.2f}" if fee.fee_found else "No",
            DecisionResult.PROCEED,
            f"Applied {fee.rate_source.value} rate: ${fee.applied_rate:.2f}",
        )
        return fee

    def _prolonged_service_line(
        self,
        run: _Run,
        prolonged: ProlongedServiceResult,
        icd10_codes: List[str],
        primary: BillableClaimLine,
    ) -> BillableClaimLine:
        encounter = run.encounter
        fee = self.fee_resolver.lookup_fee(
            prolonged.additional_cpt, encounter.payer_id, encounter.place_of_service
        )
        allowed = fee.allowed_amount * prolonged.units if fee.allowed_amount is not None else None
        return BillableClaimLine(
            cpt_code=prolonged.additional_cpt,
            cpt_modifiers=[],
            icd10_codes=list(icd10_codes),
            billed_amount=round(fee.applied_rate * prolonged.units, 2),
            allowed_amount=allowed,
            payer_id=encounter.payer_id,
            service_date=encounter.service_date,
            units=prolonged.units,
            place_of_service=encounter.place_of_service,
            rendering_provider_id=encounter.provider_id,
            medical_necessity_validated=primary.medical_necessity_validated,
        )

    def _classification_confident(self, classification: ServiceClassification) -> bool:
        return (
            classification.classification_type != ClassificationType.UNKNOWN
            and classification.confidence >= self.config.manual_review_threshold
        )

    @staticmethod
    def _deny(run: _Run, code: str, message: str, suggestion: str) -> DecisionTreeResult:
        return DecisionTreeResult(
            success=False,
            decisions=tuple(run.decisions),
            validation_errors=[
                ValidationIssue(severity=Severity.ERROR, code=code, message=message, suggestion=suggestion)
            ],
            warnings=run.warnings,
            requires_manual_review=False,
            final_state=PipelineState.DENIED,
        )

    @staticmethod
    def _defer(run: _Run, reason: str) -> DecisionTreeResult:
        return DecisionTreeResult(
            success=False,
            decisions=tuple(run.decisions),
            warnings=run.warnings,
            requires_manual_review=True,
            manual_review_reason=reason,
            final_state=PipelineState.MANUAL_REVIEW,
        )
