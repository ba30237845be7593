"""
Prolonged service add-on detection (99417).

Time-qualified high-level office E/M codes can carry an add-on code for
each full 15 minutes spent beyond the code's base time.
"""

from typing import Dict, Optional

from .stage_models import ProlongedServiceResult

# Base time in minutes before prolonged service time starts counting
PROLONGED_BASE_TIMES: Dict[str, int] = {
    "99204": 45,  # New patient, level 4
    "99205": 60,  # New patient, level 5
    "99214": 40,  # Established, level 4
    "99215": 55,  # Established, level 5
}


def check_prolonged_services(
    cpt_code: str,
    time_spent: Optional[int],
    is_em: bool,
    add_on_code: str = "99417",
    increment_minutes: int = 15,
    max_units: int = 16,
) -> ProlongedServiceResult:
    """
    Determine whether prolonged service units apply.

    Args:
        cpt_code: Resolved primary code
        time_spent: Total documented time in minutes
        is_em: Whether the encounter was leveled as E/M
        add_on_code: Prolonged service code to bill
        increment_minutes: Minutes per unit, also the minimum extra time
        max_units: Unit cap (16 units = 4 hours)

    Returns:
        ProlongedServiceResult; ``applies`` is False when not billable
    """
    base_time = PROLONGED_BASE_TIMES.get(cpt_code)
    if not is_em or not time_spent or base_time is None:
        return ProlongedServiceResult()

    extra_time = time_spent - base_time
    if extra_time < increment_minutes:
        return ProlongedServiceResult(extra_time=max(extra_time, 0))

    units = min(extra_time // increment_minutes, max_units)
    return ProlongedServiceResult(
        applies=True,
        units=units,
        extra_time=extra_time,
        additional_cpt=add_on_code,
    )
