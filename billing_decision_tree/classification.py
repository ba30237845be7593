"""
Service classification (Node B): procedural vs evaluation and management.
"""

from .models import EncounterInput, EncounterType
from .place_of_service import validate_place_of_service
from .stage_models import ClassificationType, ServiceClassification

PROCEDURAL_ENCOUNTER_TYPES = frozenset({
    EncounterType.SURGERY,
    EncounterType.PROCEDURE,
    EncounterType.LAB,
    EncounterType.RADIOLOGY,
})

EM_ENCOUNTER_TYPES = frozenset({
    EncounterType.OFFICE_VISIT,
    EncounterType.TELEHEALTH,
    EncounterType.CONSULTATION,
    EncounterType.EMERGENCY,
    EncounterType.INPATIENT,
})


def classify_service(encounter: EncounterInput) -> ServiceClassification:
    """
    Classify an encounter as procedural or E/M.

    An invalid place of service for the encounter type forces ``unknown``
    with confidence 30. Procedural encounter types win over an explicit
    procedure code, which in turn wins over E/M encounter types.
    """
    pos = encounter.place_of_service
    pos_validation = validate_place_of_service(pos, encounter.encounter_type)

    if not pos_validation.valid:
        return ServiceClassification(
            classification_type=ClassificationType.UNKNOWN,
            confidence=30,
            rationale=f"Invalid POS: {pos_validation.message}",
            place_of_service_valid=False,
        )

    encounter_type = encounter.encounter_type

    if encounter_type in PROCEDURAL_ENCOUNTER_TYPES:
        return ServiceClassification(
            classification_type=ClassificationType.PROCEDURAL,
            confidence=95,
            rationale=f'Encounter type "{encounter_type.value}" is procedural in nature at POS {pos}',
        )

    procedures = encounter.procedures_performed
    if procedures and procedures[0].cpt_code:
        return ServiceClassification(
            classification_type=ClassificationType.PROCEDURAL,
            confidence=90,
            rationale=f"Procedure codes documented in encounter at POS {pos}",
        )

    if encounter_type in EM_ENCOUNTER_TYPES:
        return ServiceClassification(
            classification_type=ClassificationType.EVALUATION_MANAGEMENT,
            confidence=95,
            rationale=(
                f'Encounter type "{encounter_type.value}" is evaluation/management '
                f'at POS {pos} ({pos_validation.pos_description})'
            ),
        )

    return ServiceClassification(
        classification_type=ClassificationType.UNKNOWN,
        confidence=50,
        rationale="Unable to definitively classify encounter type",
    )
