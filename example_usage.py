"""
Example usage of the Billing Decision Tree.

This script demonstrates how encounters are coded into claim lines,
denied, or deferred to manual review.
"""

from datetime import date

from billing_decision_tree import (
    BillingDecisionTree,
    EncounterInput,
    EncounterType,
    InMemorySocialRiskData,
    PresentingDiagnosis,
    ProcedurePerformed,
)
from billing_decision_tree.sdoh import FactorSeverity, SDOHCategory, SDOHFactor


def print_result(result):
    print(f"\n{'Node':<20} {'Answer':<36} {'Result':<14}")
    print("-" * 80)
    for node in result.decisions:
        print(f"{node.node_id:<20} {node.answer[:35]:<36} {node.result.value:<14}")

    if result.success:
        print(f"\n{'CPT':<8} {'Modifiers':<12} {'Units':<6} {'Diagnoses':<30} {'Billed':<12}")
        print("-" * 80)
        for line in result.all_claim_lines:
            print(f"{line.cpt_code:<8} {','.join(line.cpt_modifiers):<12} {line.units:<6} "
                  f"{', '.join(line.icd10_codes):<30} ${line.billed_amount:>10.2f}")
        print(f"\n{'Total Billed:':<60} ${result.total_billed:>10.2f}")
    elif result.requires_manual_review:
        print(f"\nManual review: {result.manual_review_reason}")
    else:
        for error in result.validation_errors:
            print(f"\nDenied: {error.code} - {error.message}")

    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning.code}: {warning.message}")
    print()


def example_1_telehealth_visit():
    """Example 1: Established patient telehealth follow-up."""
    print("=" * 80)
    print("Example 1: Telehealth Follow-up, Two Chronic Conditions")
    print("=" * 80)

    tree = BillingDecisionTree()

    encounter = EncounterInput(
        encounter_id="ENC-001",
        patient_id="PT-1001",
        payer_id="medicare-part-b",
        provider_id="PRV-200",
        encounter_type=EncounterType.TELEHEALTH,
        service_date=date(2025, 6, 2),
        chief_complaint="Follow-up of blood pressure and diabetes",
        presenting_diagnoses=[
            PresentingDiagnosis(term="hypertension"),
            PresentingDiagnosis(term="type 2 diabetes mellitus without complications"),
        ],
        time_spent=32,
        place_of_service="02",
    )

    print_result(tree.process_encounter(encounter))


def example_2_prolonged_visit():
    """Example 2: Long established patient visit with prolonged services."""
    print("=" * 80)
    print("Example 2: Prolonged Office Visit (99215 + 99417)")
    print("=" * 80)

    tree = BillingDecisionTree()

    encounter = EncounterInput(
        encounter_id="ENC-002",
        patient_id="PT-1001",
        payer_id="medicare-part-b",
        provider_id="PRV-200",
        encounter_type=EncounterType.OFFICE_VISIT,
        service_date=date(2025, 6, 2),
        chief_complaint="Uncontrolled diabetes with new chest pain",
        presenting_diagnoses=[
            PresentingDiagnosis(icd10_code="E11.65"),
            PresentingDiagnosis(icd10_code="R07.9"),
            PresentingDiagnosis(icd10_code="I10"),
        ],
        time_spent=90,
    )

    print_result(tree.process_encounter(encounter))


def example_3_knee_injection():
    """Example 3: Joint injection with coverage rule check."""
    print("=" * 80)
    print("Example 3: Knee Injection (LCD coverage)")
    print("=" * 80)

    tree = BillingDecisionTree()

    covered = EncounterInput(
        encounter_id="ENC-003",
        patient_id="PT-1003",
        payer_id="acme-health",
        provider_id="PRV-310",
        encounter_type=EncounterType.PROCEDURE,
        service_date=date(2025, 6, 2),
        presenting_diagnoses=[PresentingDiagnosis(icd10_code="M17.11")],
        procedures_performed=[ProcedurePerformed(description="injection, major joint", modifiers=["RT"])],
        place_of_service="22",
    )
    print_result(tree.process_encounter(covered))

    print("Same procedure billed with an unsupported diagnosis:")
    not_covered = covered.model_copy(
        update={"presenting_diagnoses": (PresentingDiagnosis(icd10_code="J06.9"),)}
    )
    print_result(tree.process_encounter(not_covered))


def example_4_denied_and_deferred():
    """Example 4: Inactive coverage and an unlisted procedure."""
    print("=" * 80)
    print("Example 4: Denial and Manual Review")
    print("=" * 80)

    tree = BillingDecisionTree()

    inactive = EncounterInput(
        patient_id="PT-1002",
        payer_id="aetna-ppo",
        provider_id="PRV-200",
        encounter_type=EncounterType.OFFICE_VISIT,
        service_date=date(2025, 6, 2),
        time_spent=20,
    )
    print_result(tree.process_encounter(inactive))

    unlisted = EncounterInput(
        patient_id="PT-1003",
        payer_id="acme-health",
        provider_id="PRV-310",
        encounter_type=EncounterType.SURGERY,
        service_date=date(2025, 6, 2),
        procedures_performed=[ProcedurePerformed(description="experimental cryoablation")],
        place_of_service="24",
    )
    print_result(tree.process_encounter(unlisted))


def example_5_sdoh_enrichment():
    """Example 5: Adding social risk Z-codes to a coded visit."""
    print("=" * 80)
    print("Example 5: SDOH Enrichment")
    print("=" * 80)

    social_risk = InMemorySocialRiskData()
    social_risk.add_factor("PT-1003", SDOHFactor(
        category=SDOHCategory.HOUSING,
        z_code="Z59.1",
        description="Inadequate housing",
        severity=FactorSeverity.MODERATE,
    ))

    tree = BillingDecisionTree(social_risk=social_risk)

    encounter = EncounterInput(
        patient_id="PT-1003",
        payer_id="acme-health",
        provider_id="PRV-310",
        encounter_type=EncounterType.OFFICE_VISIT,
        service_date=date(2025, 6, 2),
        chief_complaint="Asthma follow-up",
        presenting_diagnoses=[PresentingDiagnosis(icd10_code="J45.909")],
        time_spent=22,
    )

    result = tree.process_encounter(encounter)
    print_result(tree.enhance_with_sdoh(result, encounter.patient_id))


def main():
    """Run all examples."""
    example_1_telehealth_visit()
    example_2_prolonged_visit()
    example_3_knee_injection()
    example_4_denied_and_deferred()
    example_5_sdoh_enrichment()


if __name__ == "__main__":
    main()
