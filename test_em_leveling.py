"""
Tests for E/M level determination and the E/M code table.

Run with: pytest test_em_leveling.py -v
"""

from datetime import date

import pytest

from billing_decision_tree import EncounterInput, EncounterType, PresentingDiagnosis
from billing_decision_tree.em_leveling import (
    EM_CODE_TABLE,
    EMLevelEvaluator,
    FacilityClass,
    PatientStatus,
    _years_before,
    build_documentation,
    calculate_mdm_level,
    combine_mdm_levels,
    determine_time_based_level,
    generate_em_code,
    is_em_code,
)
from billing_decision_tree.models import DataAmount, MDMComplexityHint, RiskLevel
from billing_decision_tree.reference_data import EncounterRecord, InMemoryReferenceData
from billing_decision_tree.stage_models import EMDocumentationElements


def make_encounter(**overrides):
    fields = dict(
        patient_id="PT-1",
        payer_id="medicare-part-b",
        provider_id="PRV-1",
        encounter_type=EncounterType.OFFICE_VISIT,
        service_date=date(2025, 6, 2),
        chief_complaint="Follow-up",
        presenting_diagnoses=[PresentingDiagnosis(icd10_code="I10")],
        time_spent=25,
    )
    fields.update(overrides)
    return EncounterInput(**fields)


def established_data():
    data = InMemoryReferenceData()
    data.add_encounter(EncounterRecord("PT-1", "PRV-1", date(2024, 1, 15)))
    return data


class TestEMCodeTable:
    """Test the (facility class, patient status, level) code table."""

    @pytest.mark.parametrize("pos,new_patient,level,expected", [
        # Office / outpatient / telehealth / home
        ("11", True, 1, "99202"),
        ("11", True, 2, "99202"),
        ("11", True, 3, "99203"),
        ("11", True, 4, "99204"),
        ("11", True, 5, "99205"),
        ("11", False, 1, "99211"),
        ("11", False, 2, "99212"),
        ("11", False, 3, "99213"),
        ("11", False, 4, "99214"),
        ("11", False, 5, "99215"),
        ("02", False, 4, "99214"),
        ("12", True, 3, "99203"),
        ("22", False, 2, "99212"),
        # Inpatient, capped at level 3
        ("21", True, 1, "99221"),
        ("21", True, 3, "99223"),
        ("21", True, 5, "99223"),
        ("21", False, 2, "99232"),
        ("21", False, 4, "99233"),
        # Emergency room, no new/established distinction
        ("23", True, 1, "99281"),
        ("23", False, 1, "99281"),
        ("23", True, 4, "99284"),
        ("23", False, 5, "99285"),
        # Nursing facilities
        ("31", True, 1, "99304"),
        ("31", True, 5, "99306"),
        ("32", False, 1, "99307"),
        ("32", False, 3, "99309"),
        ("32", False, 5, "99310"),
    ])
    def test_generate_em_code(self, pos, new_patient, level, expected):
        """Test E/M code generation for each setting and level."""
        assert generate_em_code(level, new_patient, pos) == expected

    def test_table_is_complete(self):
        """Every facility class, status and level 1-5 has a five digit E/M code."""
        for facility in FacilityClass:
            for status in PatientStatus:
                for level in range(1, 6):
                    code = EM_CODE_TABLE[(facility, status, level)]
                    assert len(code) == 5
                    assert is_em_code(code)

    def test_unknown_pos_bills_as_office(self):
        """Test that an unknown POS uses office codes."""
        assert generate_em_code(3, False, "99") == "99213"
        assert generate_em_code(3, False, None) == "99213"

    def test_level_outside_table(self):
        """Test that levels outside the table produce no code."""
        assert generate_em_code(6, False, "11") is None
        assert generate_em_code(0, True, "11") is None

    def test_is_em_code(self):
        """Test recognition of E/M codes."""
        assert is_em_code("99213")
        assert is_em_code("99417")
        assert not is_em_code("20610")
        assert not is_em_code("G0438")
        assert not is_em_code(None)


class TestTimeBasedLeveling:
    """Test time thresholds for new and established patients."""

    @pytest.mark.parametrize("minutes,expected_level", [
        (5, 1),
        (10, 2),
        (19, 2),
        (20, 3),
        (25, 3),
        (30, 4),
        (39, 4),
        (40, 5),
        (120, 5),
    ])
    def test_established_patient(self, minutes, expected_level):
        """Test established patient time thresholds."""
        level, missing = determine_time_based_level(minutes, new_patient=False)
        assert level == expected_level
        assert missing == []

    @pytest.mark.parametrize("minutes,expected_level", [
        (15, 2),
        (29, 2),
        (30, 3),
        (45, 4),
        (59, 4),
        (60, 5),
        (65, 5),
    ])
    def test_new_patient(self, minutes, expected_level):
        """Test new patient time thresholds."""
        level, missing = determine_time_based_level(minutes, new_patient=True)
        assert level == expected_level
        assert missing == []

    def test_new_patient_insufficient_time(self):
        """New patients never drop to level 1; short visits are flagged."""
        level, missing = determine_time_based_level(12, new_patient=True)
        assert level == 2
        assert missing == ["Insufficient time documented for new patient visit"]


class TestMDMCalculation:
    """Test the median "2 of 3" MDM rule."""

    def test_median_of_three_categories(self):
        """Test that MDM takes the median category."""
        assert combine_mdm_levels(4, 2, 3) == 3

    @pytest.mark.parametrize("levels,expected", [
        ((1, 1, 4), 1),
        ((4, 4, 1), 4),
        ((2, 3, 2), 2),
        ((1, 4, 2), 2),
    ])
    def test_two_categories_agree(self, levels, expected):
        """Test MDM when two categories agree."""
        assert combine_mdm_levels(*levels) == expected

    def test_many_problems_with_high_risk(self):
        """3+ problems reach level 4 only when risk is high."""
        documentation = EMDocumentationElements(
            number_of_diagnoses=3,
            amount_of_data=DataAmount.MINIMAL,
            risk_level=RiskLevel.HIGH,
        )
        # problem 4, data 1, risk 4
        assert calculate_mdm_level(documentation) == 4

    def test_many_problems_moderate_risk(self):
        """Test MDM with many problems and moderate risk."""
        documentation = EMDocumentationElements(
            number_of_diagnoses=4,
            amount_of_data=DataAmount.EXTENSIVE,
            risk_level=RiskLevel.MODERATE,
        )
        # problem 3, data 4, risk 3
        assert calculate_mdm_level(documentation) == 3

    def test_build_documentation_derives_risk_and_data(self):
        """Test documentation elements derived from the encounter."""
        encounter = make_encounter(
            presenting_diagnoses=[
                PresentingDiagnosis(icd10_code="I10"),
                PresentingDiagnosis(icd10_code="E11.9"),
                PresentingDiagnosis(icd10_code="E78.5"),
            ],
        )
        documentation = build_documentation(encounter)

        assert documentation.number_of_diagnoses == 3
        assert documentation.amount_of_data == DataAmount.MODERATE
        assert documentation.risk_level == RiskLevel.HIGH
        assert documentation.history_of_present_illness

    def test_build_documentation_uses_hint(self):
        """Test that an MDM hint overrides derived elements."""
        encounter = make_encounter(
            mdm_complexity=MDMComplexityHint(amount_of_data=DataAmount.EXTENSIVE, risk_level=RiskLevel.MINIMAL),
        )
        documentation = build_documentation(encounter)

        assert documentation.amount_of_data == DataAmount.EXTENSIVE
        assert documentation.risk_level == RiskLevel.MINIMAL


class TestEMLevelEvaluator:
    """Test end-to-end E/M evaluation."""

    def test_established_patient_25_minutes(self):
        """Test a 25 minute established visit."""
        evaluator = EMLevelEvaluator(established_data())
        result = evaluator.evaluate(make_encounter(time_spent=25))

        assert result.level_determined
        assert result.em_level == 3
        assert result.em_code == "99213"
        assert not result.new_patient
        assert result.time_based_coding
        assert not result.mdm_based_coding

    def test_new_patient_65_minutes(self):
        """Test a 65 minute new patient visit."""
        evaluator = EMLevelEvaluator(InMemoryReferenceData())
        result = evaluator.evaluate(make_encounter(time_spent=65))

        assert result.new_patient
        assert result.em_level == 5
        assert result.em_code == "99205"

    def test_mdm_path_never_assigns_level_1_to_new_patient(self):
        """Test that MDM leveling never gives a new patient level 1."""
        evaluator = EMLevelEvaluator(InMemoryReferenceData())
        encounter = make_encounter(time_spent=None, presenting_diagnoses=[], chief_complaint=None)

        result = evaluator.evaluate(encounter)

        assert result.mdm_based_coding
        assert result.mdm_level == 1
        assert result.em_level == 2
        assert result.em_code == "99202"
        assert "Chief complaint / history of present illness not documented" in result.missing_elements

    def test_mdm_path_under_ten_minutes(self):
        """Less than 10 minutes of time falls back to MDM."""
        evaluator = EMLevelEvaluator(established_data())
        encounter = make_encounter(
            time_spent=5,
            presenting_diagnoses=[
                PresentingDiagnosis(icd10_code="I10"),
                PresentingDiagnosis(icd10_code="E11.9"),
            ],
        )

        result = evaluator.evaluate(encounter)

        # problem 3, data 2 (limited), risk 3 (moderate)
        assert result.mdm_based_coding
        assert result.em_level == 3
        assert result.em_code == "99213"

    def test_prior_encounter_outside_lookback_is_new_patient(self):
        """Test that old encounters make the patient new."""
        data = InMemoryReferenceData()
        data.add_encounter(EncounterRecord("PT-1", "PRV-1", date(2021, 6, 1)))
        evaluator = EMLevelEvaluator(data, lookback_years=3)

        assert evaluator.is_new_patient("PT-1", "PRV-1", date(2025, 6, 2))

    def test_prior_encounter_with_other_provider_is_new_patient(self):
        """Test that another provider's encounter makes the patient new."""
        data = InMemoryReferenceData()
        data.add_encounter(EncounterRecord("PT-1", "PRV-9", date(2024, 6, 1)))
        evaluator = EMLevelEvaluator(data)

        assert evaluator.is_new_patient("PT-1", "PRV-1", date(2025, 6, 2))

    def test_lookup_failure_assumes_established(self):
        """Test that a failed lookup treats the patient as established."""
        class OfflineData(InMemoryReferenceData):
            def has_prior_encounter(self, patient_id, provider_id, since, before):
                raise ConnectionError("encounter store unavailable")

        evaluator = EMLevelEvaluator(OfflineData())

        assert not evaluator.is_new_patient("PT-1", "PRV-1", date(2025, 6, 2))

    def test_inpatient_encounter(self):
        """Test inpatient E/M codes."""
        evaluator = EMLevelEvaluator(InMemoryReferenceData())
        encounter = make_encounter(
            encounter_type=EncounterType.INPATIENT,
            place_of_service="21",
            time_spent=70,
        )

        result = evaluator.evaluate(encounter)

        assert result.em_level == 5
        assert result.em_code == "99223"

    def test_years_before_leap_day(self):
        """Test the lookback window from a leap day."""
        assert _years_before(date(2024, 2, 29), 3) == date(2021, 2, 28)
        assert _years_before(date(2025, 6, 2), 3) == date(2022, 6, 2)
