"""
Modifier determination (Node E).

Each detected circumstance maps to exactly one modifier. Circumstances
without a mapping produce no modifier.
"""

from typing import Iterable, List, NamedTuple, Optional

from .em_leveling import is_em_code
from .models import EncounterInput, EncounterType, ServiceCircumstance
from .stage_models import ModifierDecision, ProlongedServiceResult


class ModifierRule(NamedTuple):
    circumstance: ServiceCircumstance
    modifier: str
    rationale: str


# Order here is the order modifiers appear on the claim line
MODIFIER_TABLE: List[ModifierRule] = [
    ModifierRule(ServiceCircumstance.EM_WITH_PROCEDURE, "25",
                 "Significant, separately identifiable E/M service on same day as procedure"),
    ModifierRule(ServiceCircumstance.TELEHEALTH, "95", "Telehealth service (synchronous)"),
    ModifierRule(ServiceCircumstance.TELEHEALTH_ASYNC, "GQ", "Telehealth service (asynchronous)"),
    ModifierRule(ServiceCircumstance.TELEHEALTH_GT, "GT", "Telehealth service via interactive audio/video"),
    ModifierRule(ServiceCircumstance.PROFESSIONAL_COMPONENT, "26", "Professional component only"),
    ModifierRule(ServiceCircumstance.TECHNICAL_COMPONENT, "TC", "Technical component only"),
    ModifierRule(ServiceCircumstance.DISTINCT_PROCEDURE, "59", "Distinct procedural service"),
    ModifierRule(ServiceCircumstance.BILATERAL, "50", "Bilateral procedure"),
    ModifierRule(ServiceCircumstance.LEFT_SIDE, "LT", "Left side"),
    ModifierRule(ServiceCircumstance.RIGHT_SIDE, "RT", "Right side"),
    ModifierRule(ServiceCircumstance.REPEAT_SAME_PHYSICIAN, "76", "Repeat procedure by same physician"),
    ModifierRule(ServiceCircumstance.REPEAT_DIFFERENT_PHYSICIAN, "77", "Repeat procedure by different physician"),
    ModifierRule(ServiceCircumstance.REDUCED_SERVICE, "52", "Reduced services"),
    ModifierRule(ServiceCircumstance.DISCONTINUED, "53", "Discontinued procedure"),
    ModifierRule(ServiceCircumstance.ASSISTANT_SURGEON, "80", "Assistant surgeon"),
]


def detect_circumstances(cpt_code: str, encounter: EncounterInput) -> List[ServiceCircumstance]:
    """
    Detect circumstances from the encounter and the resolved code.

    Telehealth encounters and E/M codes billed alongside documented
    procedures are detected; other circumstances come from the encounter's
    ``additional_circumstances`` flags.
    """
    circumstances: List[ServiceCircumstance] = []

    if encounter.encounter_type == EncounterType.TELEHEALTH:
        circumstances.append(ServiceCircumstance.TELEHEALTH)

    if is_em_code(cpt_code) and encounter.procedures_performed:
        circumstances.append(ServiceCircumstance.EM_WITH_PROCEDURE)

    for flag in encounter.additional_circumstances:
        if flag not in circumstances:
            circumstances.append(flag)

    return circumstances


def determine_modifiers(
    cpt_code: str,
    circumstances: Iterable[ServiceCircumstance],
    prolonged_services: Optional[ProlongedServiceResult] = None,
) -> ModifierDecision:
    """
    Determine applicable modifiers for a set of circumstances.

    Args:
        cpt_code: Resolved primary code
        circumstances: Detected circumstances
        prolonged_services: Prolonged service result to carry on the decision

    Returns:
        ModifierDecision with modifiers in claim order and their rationale
    """
    detected = [ServiceCircumstance(c) for c in circumstances]
    decision = ModifierDecision(special_circumstances=[c.value for c in detected])

    for rule in MODIFIER_TABLE:
        if rule.circumstance in detected:
            decision.modifiers_applied.append(rule.modifier)
            decision.modifier_rationale[rule.modifier] = rule.rationale

    if prolonged_services is not None and prolonged_services.applies:
        decision.prolonged_services = prolonged_services

    return decision
