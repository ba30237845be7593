"""
End-to-end tests for the billing decision tree.

Run with: pytest test_decision_tree.py -v
"""

from datetime import date

import pytest

from billing_decision_tree import (
    BillingDecisionTree,
    DecisionTreeConfig,
    EncounterInput,
    EncounterType,
    PresentingDiagnosis,
    ProcedurePerformed,
    ServiceCircumstance,
)
from billing_decision_tree.models import DecisionResult, PipelineState, Severity
from billing_decision_tree.reference_data import (
    EncounterRecord,
    InMemoryReferenceData,
    create_default_reference_data,
)
from billing_decision_tree.stage_models import EMEvaluationResult

CF = 33.2875


def make_encounter(**overrides):
    """Established Medicare patient seen in the office by PRV-200."""
    fields = dict(
        encounter_id="ENC-TEST",
        patient_id="PT-1001",
        payer_id="medicare-part-b",
        provider_id="PRV-200",
        encounter_type=EncounterType.OFFICE_VISIT,
        service_date=date(2025, 6, 2),
        chief_complaint="Blood pressure follow-up",
        presenting_diagnoses=[PresentingDiagnosis(icd10_code="I10")],
        time_spent=25,
    )
    fields.update(overrides)
    return EncounterInput(**fields)


def node_ids(result):
    return [node.node_id for node in result.decisions]


def warning_codes(result):
    return [warning.code for warning in result.warnings]


@pytest.fixture
def tree():
    return BillingDecisionTree()


class TestSuccessfulCoding:
    """Test encounters that produce claim lines."""

    def test_telehealth_visit_with_two_chronic_conditions(self, tree):
        """Test a telehealth follow-up coded as 99214-95."""
        encounter = make_encounter(
            encounter_type=EncounterType.TELEHEALTH,
            place_of_service="02",
            presenting_diagnoses=[
                PresentingDiagnosis(term="hypertension"),
                PresentingDiagnosis(term="type 2 diabetes mellitus without complications"),
            ],
            time_spent=32,
        )

        result = tree.process_encounter(encounter)

        assert result.success
        assert not result.requires_manual_review
        assert result.final_state == PipelineState.COMPLETE
        line = result.claim_line
        assert line.cpt_code == "99214"
        assert line.cpt_modifiers == ["95"]
        assert line.icd10_codes == ["I10", "E11.9"]
        assert line.place_of_service == "02"
        assert line.units == 1
        assert line.rendering_provider_id == "PRV-200"
        assert line.billed_amount == pytest.approx(3.74 * CF, abs=0.01)
        assert result.additional_claim_lines == []

    def test_audit_trail_for_em_visit(self, tree):
        """Test the node sequence recorded for an E/M visit."""
        result = tree.process_encounter(make_encounter())

        assert node_ids(result) == [
            "NODE_A", "NODE_B", "NODE_D", "NODE_E",
            "DX_ASSIGNMENT", "MEDICAL_NECESSITY", "NODE_F", "FINAL",
        ]
        assert result.decisions[-1].result == DecisionResult.COMPLETE
        assert all(node.result == DecisionResult.PROCEED for node in result.decisions[:-1])
        timestamps = [node.timestamp for node in result.decisions]
        assert timestamps == sorted(timestamps)

    def test_office_visit_never_gets_telehealth_modifier(self, tree):
        """Test that office visits do not get modifier 95."""
        result = tree.process_encounter(make_encounter())

        assert result.claim_line.cpt_code == "99213"
        assert "95" not in result.claim_line.cpt_modifiers

    def test_prolonged_service_line(self, tree):
        """Test the 99417 add-on line for a long visit."""
        encounter = make_encounter(
            presenting_diagnoses=[
                PresentingDiagnosis(icd10_code="E11.65"),
                PresentingDiagnosis(icd10_code="R07.9"),
            ],
            time_spent=90,
        )

        result = tree.process_encounter(encounter)

        assert result.success
        assert result.claim_line.cpt_code == "99215"
        assert len(result.additional_claim_lines) == 1
        add_on = result.additional_claim_lines[0]
        assert add_on.cpt_code == "99417"
        assert add_on.units == 2
        assert add_on.icd10_codes == result.claim_line.icd10_codes
        assert add_on.billed_amount == pytest.approx(round(0.99 * CF, 2) * 2, abs=0.01)
        assert result.total_billed == pytest.approx(result.claim_line.billed_amount + add_on.billed_amount)

        modifier_node = next(node for node in result.decisions if node.node_id == "NODE_E")
        assert "Prolonged (99417 x2)" in modifier_node.answer
        assert "additional lines (prolonged services)" in result.decisions[-1].rationale

    def test_em_with_separate_procedure_gets_25(self, tree):
        """Test modifier 25 when a procedure is also performed."""
        encounter = make_encounter(procedures_performed=[ProcedurePerformed(description="venipuncture")])

        result = tree.process_encounter(encounter)

        assert result.claim_line.cpt_code == "99213"
        assert result.claim_line.cpt_modifiers == ["25"]

    def test_payer_multiplier_on_file(self, tree):
        """Test that the payer's Medicare multiplier scales the fee."""
        encounter = make_encounter(patient_id="PT-1003", payer_id="acme-health", provider_id="PRV-310",
                                   time_spent=35)

        result = tree.process_encounter(encounter)

        # New patient to PRV-310: 35 minutes is level 3
        assert result.claim_line.cpt_code == "99203"
        assert result.claim_line.billed_amount == pytest.approx(3.27 * CF * 1.25, abs=0.01)

    def test_contracted_rate(self):
        """Test that a contracted rate is billed and allowed."""
        data = create_default_reference_data()
        data.add_encounter(EncounterRecord("PT-1003", "PRV-310", date(2025, 1, 10)))
        tree = BillingDecisionTree(reference_data=data)
        encounter = make_encounter(patient_id="PT-1003", payer_id="acme-health", provider_id="PRV-310",
                                   time_spent=35)

        result = tree.process_encounter(encounter)

        assert result.claim_line.cpt_code == "99214"
        assert result.claim_line.billed_amount == 165.00
        assert result.claim_line.allowed_amount == 165.00

    def test_procedure_with_lcd_coverage(self, tree):
        """Test a knee injection covered by an LCD."""
        encounter = make_encounter(
            patient_id="PT-1003",
            payer_id="acme-health",
            provider_id="PRV-310",
            encounter_type=EncounterType.PROCEDURE,
            place_of_service="22",
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="M17.11")],
            procedures_performed=[ProcedurePerformed(description="injection, major joint", modifiers=["rt"])],
            time_spent=None,
        )

        result = tree.process_encounter(encounter)

        assert result.success
        line = result.claim_line
        assert line.cpt_code == "20610"
        assert line.cpt_modifiers == ["RT"]
        assert line.medical_necessity_validated
        # facility RVUs at outpatient hospital
        assert line.billed_amount == pytest.approx(3.72 * CF * 1.25, abs=0.01)
        assert "NODE_C" in node_ids(result)
        assert "NODE_D" not in node_ids(result)
        necessity_node = next(node for node in result.decisions if node.node_id == "MEDICAL_NECESSITY")
        assert "lcdid=39240" in necessity_node.rationale

    def test_explicit_code_in_office_is_procedural(self, tree):
        """Test that an explicit CPT code makes an office visit procedural."""
        encounter = make_encounter(procedures_performed=[ProcedurePerformed(cpt_code="93000")])

        result = tree.process_encounter(encounter)

        assert result.claim_line.cpt_code == "93000"
        assert result.claim_line.cpt_modifiers == []

    def test_additional_circumstances_become_modifiers(self, tree):
        """Test that documented circumstances become modifiers."""
        encounter = make_encounter(
            encounter_type=EncounterType.SURGERY,
            place_of_service="24",
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="D48.5")],
            procedures_performed=[ProcedurePerformed(cpt_code="11102")],
            additional_circumstances=[ServiceCircumstance.LEFT_SIDE],
        )

        result = tree.process_encounter(encounter)

        assert result.claim_line.cpt_code == "11102"
        assert result.claim_line.cpt_modifiers == ["LT"]

    def test_chargemaster_fallback_warning(self, tree):
        """Test the fee fallback note for chargemaster rates."""
        encounter = make_encounter(
            encounter_type=EncounterType.PROCEDURE,
            place_of_service="22",
            procedures_performed=[ProcedurePerformed(cpt_code="36415")],
        )

        result = tree.process_encounter(encounter)

        assert result.success
        assert result.claim_line.billed_amount == 150.0
        assert "FEE_FALLBACK" in warning_codes(result)


class TestWarnings:
    """Test non-blocking warnings."""

    def test_missing_coding_rules_recommend_review(self, tree):
        """Test that missing coding rules recommend review."""
        result = tree.process_encounter(make_encounter())

        assert result.success
        assert not result.requires_manual_review
        review = next(w for w in result.warnings if w.code == "MEDICAL_NECESSITY_REVIEW_RECOMMENDED")
        assert review.severity == Severity.INFO

    def test_fallback_diagnosis(self, tree):
        """Test the unspecified diagnosis fallback."""
        result = tree.process_encounter(make_encounter(presenting_diagnoses=[]))

        assert result.success
        assert result.claim_line.icd10_codes == ["Z00.00"]
        assert "UNSPECIFIED_DIAGNOSIS_FALLBACK" in warning_codes(result)

    def test_unresolved_diagnosis_term(self, tree):
        """Test that unresolved terms are dropped and noted."""
        encounter = make_encounter(
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="I10"), PresentingDiagnosis(term="xyzzy")],
        )

        result = tree.process_encounter(encounter)

        assert result.claim_line.icd10_codes == ["I10"]
        assert "DIAGNOSIS_TERM_UNRESOLVED" in warning_codes(result)

    def test_unknown_diagnosis_code_flagged(self, tree):
        """Test that an explicit code missing from the code set is kept and flagged."""
        encounter = make_encounter(
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="I10"), PresentingDiagnosis(icd10_code="Q99.9")],
        )

        result = tree.process_encounter(encounter)

        assert result.success
        assert result.claim_line.icd10_codes == ["I10", "Q99.9"]
        unknown = next(w for w in result.warnings if w.code == "DIAGNOSIS_CODE_UNKNOWN")
        assert unknown.severity == Severity.INFO
        assert "Q99.9" in unknown.message

    def test_incomplete_documentation(self, tree):
        """Test MDM leveling when time is not documented."""
        result = tree.process_encounter(make_encounter(time_spent=None, chief_complaint=None))

        # one diagnosis, limited data, low risk: MDM level 2
        assert result.success
        assert result.claim_line.cpt_code == "99212"
        assert "EM_DOCUMENTATION_INCOMPLETE" in warning_codes(result)


class TestDenials:
    """Test clean denials."""

    def test_inactive_policy(self, tree):
        """Test denial for an inactive policy."""
        result = tree.process_encounter(make_encounter(patient_id="PT-1002", payer_id="aetna-ppo"))

        assert not result.success
        assert result.claim_line is None
        assert not result.requires_manual_review
        assert result.final_state == PipelineState.DENIED
        assert [e.code for e in result.validation_errors] == ["INELIGIBLE"]
        assert result.validation_errors[0].message == "Insurance policy is not active"
        assert node_ids(result) == ["NODE_A"]
        assert result.decisions[0].result == DecisionResult.DENY

    def test_unknown_patient(self, tree):
        """Test denial for an unknown patient."""
        result = tree.process_encounter(make_encounter(patient_id="PT-9999"))

        assert result.validation_errors[0].code == "INELIGIBLE"
        assert result.validation_errors[0].message == "Patient not found in system"

    def test_payer_mismatch(self, tree):
        """Test denial when the payer does not match."""
        result = tree.process_encounter(make_encounter(payer_id="acme-health"))

        assert result.validation_errors[0].message == "Payer mismatch with patient insurance"

    def test_authorization_required(self):
        """Test denial when authorization is required."""
        tree = BillingDecisionTree(config=DecisionTreeConfig(require_authorization=True))

        result = tree.process_encounter(make_encounter())

        assert not result.success
        assert not result.requires_manual_review
        assert result.validation_errors[0].code == "AUTHORIZATION_REQUIRED"
        assert node_ids(result) == ["NODE_A"]

    def test_medical_necessity_failure(self, tree):
        """Test denial when no diagnosis supports the procedure."""
        encounter = make_encounter(
            patient_id="PT-1003",
            payer_id="acme-health",
            provider_id="PRV-310",
            encounter_type=EncounterType.PROCEDURE,
            place_of_service="22",
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="J06.9")],
            procedures_performed=[ProcedurePerformed(cpt_code="20610")],
        )

        result = tree.process_encounter(encounter)

        assert not result.success
        assert result.claim_line is None
        assert not result.requires_manual_review
        assert result.final_state == PipelineState.DENIED
        assert result.validation_errors[0].code == "MEDICAL_NECESSITY_FAILED"
        assert result.decisions[-1].node_id == "MEDICAL_NECESSITY"
        assert result.decisions[-1].result == DecisionResult.DENY
        assert "NODE_F" not in node_ids(result)


class TestManualReview:
    """Test encounters deferred to a coder."""

    def test_unlisted_procedure(self, tree):
        """Test manual review for an unlisted procedure."""
        encounter = make_encounter(
            patient_id="PT-1003",
            payer_id="acme-health",
            provider_id="PRV-310",
            encounter_type=EncounterType.SURGERY,
            place_of_service="24",
            procedures_performed=[ProcedurePerformed(description="experimental cryoablation")],
        )

        result = tree.process_encounter(encounter)

        assert not result.success
        assert result.requires_manual_review
        assert result.claim_line is None
        assert result.manual_review_reason == "Unlisted procedure code - requires manual review"
        assert result.final_state == PipelineState.MANUAL_REVIEW
        assert "UNLISTED_PROCEDURE" in warning_codes(result)
        assert result.decisions[-1].node_id == "NODE_C"
        assert result.decisions[-1].result == DecisionResult.MANUAL_REVIEW

    def test_inactive_explicit_code_without_description(self):
        """Test that an inactive code with no description is deferred."""
        data = create_default_reference_data()
        data.procedure_codes["17000"].status = "deleted"
        tree = BillingDecisionTree(reference_data=data)
        encounter = make_encounter(
            encounter_type=EncounterType.PROCEDURE,
            place_of_service="22",
            procedures_performed=[ProcedurePerformed(cpt_code="17000")],
        )

        result = tree.process_encounter(encounter)

        assert result.requires_manual_review
        assert result.claim_line is None

    def test_invalid_place_of_service(self, tree):
        """Test manual review for an invalid place of service."""
        encounter = make_encounter(encounter_type=EncounterType.TELEHEALTH, place_of_service="11")

        result = tree.process_encounter(encounter)

        assert not result.success
        assert result.requires_manual_review
        assert result.manual_review_reason == "Invalid place of service for encounter type"
        assert "INVALID_PLACE_OF_SERVICE" in warning_codes(result)
        assert node_ids(result) == ["NODE_A", "NODE_B"]
        assert result.decisions[-1].result == DecisionResult.MANUAL_REVIEW

    def test_low_confidence_classification(self):
        """Test manual review below the confidence threshold."""
        tree = BillingDecisionTree(config=DecisionTreeConfig(manual_review_threshold=96))

        result = tree.process_encounter(make_encounter())

        assert result.requires_manual_review
        assert result.manual_review_reason == "Complex encounter requires manual classification"
        assert "CLASSIFICATION_UNRESOLVED" in warning_codes(result)

    def test_undetermined_em_level(self, tree):
        """Test manual review when the E/M level cannot be set."""
        class IncompleteEvaluator:
            def evaluate(self, encounter):
                return EMEvaluationResult(
                    level_determined=False,
                    missing_elements=["Total time not documented"],
                )

        tree.em_evaluator = IncompleteEvaluator()

        result = tree.process_encounter(make_encounter())

        assert result.requires_manual_review
        assert result.manual_review_reason == "Unable to determine E/M level - insufficient documentation"
        assert "EM_LEVEL_UNDETERMINED" in warning_codes(result)
        assert result.decisions[-1].node_id == "NODE_D"

    def test_system_error_becomes_processing_error(self):
        """Test that unexpected errors become a processing error result."""
        class OfflineData(InMemoryReferenceData):
            def get_patient_insurance(self, patient_id, payer_id):
                raise RuntimeError("eligibility database offline")

        tree = BillingDecisionTree(reference_data=OfflineData())

        result = tree.process_encounter(make_encounter())

        assert not result.success
        assert result.requires_manual_review
        assert result.final_state == PipelineState.MANUAL_REVIEW
        assert result.manual_review_reason == "System error: eligibility database offline"
        error = result.validation_errors[0]
        assert error.code == "PROCESSING_ERROR"
        assert "eligibility database offline" in error.message


class TestConfiguration:
    """Test optional stages."""

    def test_eligibility_check_disabled(self):
        """Test skipping the eligibility check."""
        tree = BillingDecisionTree(config=DecisionTreeConfig(enable_eligibility_check=False))

        result = tree.process_encounter(make_encounter(patient_id="PT-9999"))

        assert result.success
        assert result.decisions[0].answer == "Skipped"

    def test_medical_necessity_check_disabled(self):
        """Test skipping medical necessity validation."""
        tree = BillingDecisionTree(config=DecisionTreeConfig(enable_medical_necessity_check=False))
        encounter = make_encounter(
            encounter_type=EncounterType.PROCEDURE,
            place_of_service="22",
            presenting_diagnoses=[PresentingDiagnosis(icd10_code="J06.9")],
            procedures_performed=[ProcedurePerformed(cpt_code="20610")],
        )

        result = tree.process_encounter(encounter)

        assert result.success
        assert not result.claim_line.medical_necessity_validated

    def test_loads_reference_data_from_directory(self, tmp_path):
        """Test building the tree from a data directory."""
        (tmp_path / "patients.json").write_text(
            '[{"patient_id": "P1", "insurance_payer_id": "medicaid-state", "insurance_status": "Active"}]'
        )
        tree = BillingDecisionTree(data_directory=tmp_path)

        result = tree.process_encounter(make_encounter(patient_id="P1", payer_id="medicaid-state"))

        assert result.success
        # new patient, 25 minutes; unknown code without RVUs bills the base rate
        assert result.claim_line.cpt_code == "99202"
        assert result.claim_line.billed_amount == 100.0


class TestBatchProcessing:
    """Test processing multiple encounters."""

    def test_results_in_input_order(self, tree):
        """Test that batch results keep input order."""
        encounters = [
            make_encounter(encounter_id="E1"),
            make_encounter(encounter_id="E2", patient_id="PT-1002", payer_id="aetna-ppo"),
            make_encounter(encounter_id="E3", time_spent=45),
        ]

        sequential = tree.process_encounters(encounters)
        threaded = tree.process_encounters(encounters, max_workers=3)

        for results in (sequential, threaded):
            assert [r.success for r in results] == [True, False, True]
            assert results[0].claim_line.cpt_code == "99213"
            assert results[2].claim_line.cpt_code == "99215"

    def test_runs_are_independent(self, tree):
        """Test that one run does not leak into the next."""
        first = tree.process_encounter(make_encounter())
        second = tree.process_encounter(make_encounter())

        assert len(first.decisions) == len(second.decisions)
        assert first.claim_line == second.claim_line

    def test_sdoh_requires_source(self, tree):
        """Test that SDOH enrichment needs a social risk source."""
        result = tree.process_encounter(make_encounter())

        with pytest.raises(ValueError):
            tree.enhance_with_sdoh(result, "PT-1001")
