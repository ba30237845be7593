"""
Medical necessity validation of procedure/diagnosis combinations.

Coverage rules list required and excluded ICD-10 wildcard patterns
(e.g. ``E11.*``) per procedure code, optionally restricted to the primary
diagnosis and tied to an NCD or LCD.
"""

import re
from functools import lru_cache
from typing import List, Optional, Sequence

from .reference_data import CodingRule, ReferenceDataPort
from .stage_models import CodeCombination, MedicalNecessityCheck

NO_RULES_REASON = "No specific coverage rules found (review recommended)"


@lru_cache(maxsize=512)
def _compile_pattern(pattern: str) -> "re.Pattern":
    # "E11.*" -> ^E11\..*$
    regex = ".*".join(re.escape(part) for part in pattern.strip().upper().split("*"))
    return re.compile(f"^{regex}$")


def matches_pattern(code: str, pattern: str) -> bool:
    """Check an ICD-10 code against a wildcard pattern where ``*`` matches anything."""
    return bool(_compile_pattern(pattern).match(code.strip().upper()))


def rule_matches(rule: CodingRule, icd10_code: str, is_primary: bool) -> bool:
    """
    A rule matches a diagnosis when it satisfies a required pattern (in the
    primary position if the rule demands it) and no excluded pattern.
    """
    if rule.primary_diagnosis_only and not is_primary:
        return False

    if rule.required_icd10_patterns:
        if not any(matches_pattern(icd10_code, p) for p in rule.required_icd10_patterns):
            return False

    if rule.excluded_icd10_patterns:
        if any(matches_pattern(icd10_code, p) for p in rule.excluded_icd10_patterns):
            return False

    return True


class MedicalNecessityValidator:
    """Validates that diagnoses support a procedure under the payer's coverage rules."""

    def __init__(self, reference_data: ReferenceDataPort):
        self.reference_data = reference_data

    def validate(self, cpt_code: str, icd10_codes: Sequence[str]) -> MedicalNecessityCheck:
        """
        Validate medical necessity for a procedure code.

        The combination is valid when at least one diagnosis matches a rule.
        Codes without any active rule are allowed but flagged for review.

        Args:
            cpt_code: Resolved procedure code
            icd10_codes: Diagnosis codes, primary first

        Returns:
            MedicalNecessityCheck with per-diagnosis verdicts and NCD/LCD references
        """
        icd10_codes = list(icd10_codes)
        rules = self.reference_data.get_coding_rules(cpt_code)

        if not rules:
            return MedicalNecessityCheck(
                is_valid=True,
                cpt_code=cpt_code,
                icd10_codes=icd10_codes,
                review_recommended=True,
                valid_combinations=[
                    CodeCombination(cpt=cpt_code, icd10=icd10, valid=True, reason=NO_RULES_REASON)
                    for icd10 in icd10_codes
                ],
            )

        ncd_reference = self._reference_for(rules, "ncd")
        lcd_reference = self._reference_for(rules, "lcd")

        combinations: List[CodeCombination] = []
        for index, icd10 in enumerate(icd10_codes):
            matching_rule = next(
                (rule for rule in rules if rule_matches(rule, icd10, is_primary=index == 0)),
                None,
            )
            if matching_rule is not None:
                reason = "Meets medical necessity requirements"
                if matching_rule.source in ("ncd", "lcd"):
                    reason += f" ({matching_rule.source.upper()})"
            else:
                reason = "Does not meet coverage requirements"
            combinations.append(
                CodeCombination(cpt=cpt_code, icd10=icd10, valid=matching_rule is not None, reason=reason)
            )

        if combinations and not combinations[0].valid:
            combinations[0].reason += " - Primary diagnosis must support procedure"

        return MedicalNecessityCheck(
            is_valid=any(combo.valid for combo in combinations),
            cpt_code=cpt_code,
            icd10_codes=icd10_codes,
            valid_combinations=combinations,
            ncd_reference=ncd_reference,
            lcd_reference=lcd_reference,
        )

    @staticmethod
    def _reference_for(rules: List[CodingRule], source: str) -> Optional[str]:
        reference = None
        for rule in rules:
            if rule.source == source and rule.reference_url:
                reference = rule.reference_url
        return reference
