"""
Tests for diagnosis assignment and medical necessity validation.

Run with: pytest test_medical_necessity.py -v
"""

import pytest

from billing_decision_tree import PresentingDiagnosis
from billing_decision_tree.diagnosis import assign_diagnosis_codes
from billing_decision_tree.medical_necessity import (
    NO_RULES_REASON,
    MedicalNecessityValidator,
    matches_pattern,
    rule_matches,
)
from billing_decision_tree.reference_data import (
    CodingRule,
    InMemoryReferenceData,
    create_default_reference_data,
)


@pytest.fixture
def reference_data():
    return create_default_reference_data()


class TestPatternMatching:
    """Test ICD-10 wildcard patterns."""

    @pytest.mark.parametrize("code,pattern,expected", [
        ("E11.9", "E11.*", True),
        ("E11.65", "E11.*", True),
        ("E10.9", "E11.*", False),
        ("E110", "E11.*", False),      # the dot is literal
        ("M25.561", "M25.5*", True),
        ("M25.461", "M25.5*", False),
        ("D48.5", "D48.5", True),
        ("D48.51", "D48.5", False),
        ("e11.9", "E11.*", True),
    ])
    def test_matches_pattern(self, code, pattern, expected):
        """Test wildcard diagnosis patterns."""
        assert matches_pattern(code, pattern) is expected

    def test_rule_requires_primary_position(self):
        """Test primary-only rules."""
        rule = CodingRule("83036", required_icd10_patterns=["E11.*"], primary_diagnosis_only=True)

        assert rule_matches(rule, "E11.9", is_primary=True)
        assert not rule_matches(rule, "E11.9", is_primary=False)

    def test_rule_with_only_exclusions(self):
        """Test a rule that only lists exclusions."""
        rule = CodingRule("11102", excluded_icd10_patterns=["Z00.*"])

        assert rule_matches(rule, "I10", is_primary=True)
        assert not rule_matches(rule, "Z00.00", is_primary=True)

    def test_excluded_pattern_wins_over_required(self):
        """Test that exclusions win over required patterns."""
        rule = CodingRule("11102", required_icd10_patterns=["Z*"], excluded_icd10_patterns=["Z00.*"])

        assert not rule_matches(rule, "Z00.01", is_primary=True)
        assert rule_matches(rule, "Z12.31", is_primary=True)


class TestMedicalNecessityValidator:
    """Test procedure/diagnosis combination validation."""

    def test_valid_when_one_diagnosis_matches(self, reference_data):
        """Test that one matching diagnosis is enough."""
        validator = MedicalNecessityValidator(reference_data)

        check = validator.validate("83036", ["I10", "E11.9"])

        assert check.is_valid
        assert not check.review_recommended
        assert [combo.valid for combo in check.valid_combinations] == [False, True]
        assert check.valid_combinations[1].reason == "Meets medical necessity requirements (LCD)"
        assert check.valid_combinations[0].reason.endswith("Primary diagnosis must support procedure")
        assert "lcdid=34813" in check.lcd_reference
        assert check.ncd_reference is None

    def test_invalid_when_no_diagnosis_matches(self, reference_data):
        """Test failure when no diagnosis matches."""
        validator = MedicalNecessityValidator(reference_data)

        check = validator.validate("83036", ["I10", "J06.9"])

        assert not check.is_valid
        assert all(not combo.valid for combo in check.valid_combinations)

    def test_excluded_diagnosis_fails(self, reference_data):
        """Test failure for an excluded diagnosis."""
        validator = MedicalNecessityValidator(reference_data)

        assert validator.validate("11102", ["D48.5"]).is_valid
        assert not validator.validate("11102", ["Z00.00"]).is_valid

    def test_no_rules_is_valid_with_review(self, reference_data):
        """Test that missing rules pass with review recommended."""
        validator = MedicalNecessityValidator(reference_data)

        check = validator.validate("99213", ["I10"])

        assert check.is_valid
        assert check.review_recommended
        assert check.valid_combinations[0].reason == NO_RULES_REASON

    def test_primary_only_rule_depends_on_order(self):
        """Test that diagnosis order matters for primary-only rules."""
        data = InMemoryReferenceData()
        data.add_coding_rule(CodingRule(
            "82947",
            required_icd10_patterns=["E11.*"],
            primary_diagnosis_only=True,
            source="ncd",
            reference_url="https://www.cms.gov/ncd/190.20",
        ))
        validator = MedicalNecessityValidator(data)

        assert validator.validate("82947", ["E11.9", "I10"]).is_valid
        check = validator.validate("82947", ["I10", "E11.9"])
        assert not check.is_valid
        assert check.ncd_reference == "https://www.cms.gov/ncd/190.20"

    def test_inactive_rules_are_ignored(self):
        """Test that inactive rules are ignored."""
        data = InMemoryReferenceData()
        data.add_coding_rule(CodingRule("82947", required_icd10_patterns=["E11.*"], active=False))
        validator = MedicalNecessityValidator(data)

        check = validator.validate("82947", ["I10"])

        assert check.is_valid
        assert check.review_recommended

    def test_any_matching_rule_is_enough(self):
        """Test that any matching rule validates the procedure."""
        data = InMemoryReferenceData()
        data.add_coding_rule(CodingRule("82947", required_icd10_patterns=["E11.*"]))
        data.add_coding_rule(CodingRule("82947", required_icd10_patterns=["R73.*"], source="lcd"))
        validator = MedicalNecessityValidator(data)

        check = validator.validate("82947", ["R73.03"])

        assert check.is_valid
        assert check.valid_combinations[0].reason == "Meets medical necessity requirements (LCD)"


class TestDiagnosisAssignment:
    """Test mapping presenting diagnoses to ICD-10 codes."""

    def test_explicit_codes_kept_in_order(self, reference_data):
        """Test that explicit codes keep their order."""
        result = assign_diagnosis_codes(
            [PresentingDiagnosis(icd10_code="e11.9"), PresentingDiagnosis(icd10_code="I10")],
            reference_data,
        )

        assert result.icd10_codes == ["E11.9", "I10"]
        assert not result.used_fallback
        assert result.unknown_codes == []

    def test_unknown_explicit_code_reported(self, reference_data):
        """Test that explicit codes absent from the code set are kept but reported once."""
        result = assign_diagnosis_codes(
            [PresentingDiagnosis(icd10_code="Q99.9"), PresentingDiagnosis(icd10_code="I10"),
             PresentingDiagnosis(icd10_code="Q99.9")],
            reference_data,
        )

        assert result.icd10_codes == ["Q99.9", "I10"]
        assert result.unknown_codes == ["Q99.9"]

    def test_terms_resolved_by_search(self, reference_data):
        """Test resolving free-text terms by search."""
        result = assign_diagnosis_codes(
            [PresentingDiagnosis(term="hypertension"), PresentingDiagnosis(term="Type 2 diabetes mellitus")],
            reference_data,
        )

        # the non-billable E11 category is skipped
        assert result.icd10_codes == ["I10", "E11.9"]
        assert result.unresolved_terms == []

    def test_duplicates_removed(self, reference_data):
        """Test that duplicate codes are removed."""
        result = assign_diagnosis_codes(
            [PresentingDiagnosis(icd10_code="I10"), PresentingDiagnosis(term="essential (primary) hypertension")],
            reference_data,
        )

        assert result.icd10_codes == ["I10"]

    def test_unresolved_term_dropped(self, reference_data):
        """Test that unresolved terms are dropped and reported."""
        result = assign_diagnosis_codes(
            [PresentingDiagnosis(term="hypertension"), PresentingDiagnosis(term="xyzzy syndrome")],
            reference_data,
        )

        assert result.icd10_codes == ["I10"]
        assert result.unresolved_terms == ["xyzzy syndrome"]
        assert not result.used_fallback

    def test_fallback_when_nothing_resolves(self, reference_data):
        """Test the fallback code when no term resolves."""
        result = assign_diagnosis_codes([PresentingDiagnosis(term="xyzzy syndrome")], reference_data)

        assert result.icd10_codes == ["Z00.00"]
        assert result.used_fallback
        assert result.unresolved_terms == ["xyzzy syndrome"]

    def test_fallback_when_no_diagnoses(self, reference_data):
        """Test the fallback code with no diagnoses."""
        result = assign_diagnosis_codes([], reference_data, fallback_code="R69")

        assert result.icd10_codes == ["R69"]
        assert result.used_fallback
