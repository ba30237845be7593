"""
Place of Service (POS) validation.

Maps CMS place of service codes to a facility name and the encounter types
that may be billed there.
"""

from typing import Dict, FrozenSet, NamedTuple, Optional

from .models import EncounterType
from .stage_models import PlaceOfServiceValidation


class PlaceOfService(NamedTuple):
    name: str
    valid_encounter_types: FrozenSet[EncounterType]


DEFAULT_PLACE_OF_SERVICE = "11"

POS_CODES: Dict[str, PlaceOfService] = {
    "02": PlaceOfService("Telehealth", frozenset({EncounterType.TELEHEALTH})),
    "11": PlaceOfService("Office", frozenset({EncounterType.OFFICE_VISIT, EncounterType.CONSULTATION})),
    "12": PlaceOfService("Home", frozenset({EncounterType.OFFICE_VISIT})),
    "21": PlaceOfService("Inpatient Hospital", frozenset({EncounterType.INPATIENT})),
    "22": PlaceOfService(
        "Outpatient Hospital",
        frozenset({EncounterType.OFFICE_VISIT, EncounterType.SURGERY, EncounterType.PROCEDURE}),
    ),
    "23": PlaceOfService("Emergency Room", frozenset({EncounterType.EMERGENCY})),
    "24": PlaceOfService(
        "Ambulatory Surgical Center",
        frozenset({EncounterType.SURGERY, EncounterType.PROCEDURE}),
    ),
    "31": PlaceOfService(
        "Skilled Nursing Facility",
        frozenset({EncounterType.OFFICE_VISIT, EncounterType.CONSULTATION}),
    ),
    "32": PlaceOfService(
        "Nursing Facility",
        frozenset({EncounterType.OFFICE_VISIT, EncounterType.CONSULTATION}),
    ),
}

# Facility settings are paid with facility RVUs
FACILITY_POS_CODES = frozenset({
    "21", "22", "23", "24", "26", "31", "34",
    "51", "52", "53", "56", "61",
})


def validate_place_of_service(
    pos_code: Optional[str],
    encounter_type: EncounterType,
) -> PlaceOfServiceValidation:
    """
    Validate a place of service code against the encounter type.

    Args:
        pos_code: Two-digit POS code; defaults to office (11) when empty
        encounter_type: Type of encounter being billed

    Returns:
        PlaceOfServiceValidation with the facility description when valid
    """
    pos = pos_code or DEFAULT_PLACE_OF_SERVICE
    encounter_type = EncounterType(encounter_type)

    pos_info = POS_CODES.get(pos)
    if pos_info is None:
        return PlaceOfServiceValidation(valid=False, message=f"Invalid POS code: {pos}")

    if encounter_type not in pos_info.valid_encounter_types:
        return PlaceOfServiceValidation(
            valid=False,
            message=(
                f'POS {pos} ({pos_info.name}) not valid for encounter type '
                f'"{encounter_type.value}"'
            ),
        )

    return PlaceOfServiceValidation(
        valid=True,
        message=f"Valid POS {pos} - {pos_info.name}",
        pos_description=pos_info.name,
    )


def is_facility_setting(pos_code: Optional[str]) -> bool:
    """
    Determine if place of service is a facility setting.

    Facility settings include inpatient and outpatient hospital, emergency
    room, ambulatory surgical center and skilled nursing facility. Office
    (11), home (12) and telehealth (02) are non-facility.
    """
    return (pos_code or DEFAULT_PLACE_OF_SERVICE) in FACILITY_POS_CODES
