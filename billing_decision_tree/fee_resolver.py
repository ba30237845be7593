"""
Fee schedule resolution (Node F).

Resolves the rate for a procedure code through three tiers:
1. Contracted rate from the payer's fee schedule
2. RBRVS-computed rate from relative value units
3. Chargemaster/default rate

A lookup failure in one tier falls through to the next, so a rate is
always returned.
"""

from typing import Optional

from .config import DecisionTreeConfig
from .logging_config import get_logger
from .place_of_service import is_facility_setting
from .reference_data import ReferenceDataPort
from .stage_models import FeeScheduleResult, RateSource

logger = get_logger(__name__)


class FeeResolver:
    """
    Calculates billed amounts for resolved procedure codes.

    RBRVS formula:
    Rate = (Work RVU + PE RVU + MP RVU) × CF × Geographic Modifier × Payer Multiplier

    Where:
    - RVU = Relative Value Unit (facility RVUs in facility settings)
    - CF = Medicare Conversion Factor
    - Payer Multiplier = the payer's rate as a multiple of Medicare
    """

    def __init__(self, reference_data: ReferenceDataPort, config: Optional[DecisionTreeConfig] = None):
        """
        Initialize resolver.

        Args:
            reference_data: Fee schedule, RVU, payer and procedure lookups
            config: Rate constants; defaults to DecisionTreeConfig()
        """
        self.reference_data = reference_data
        self.config = config or DecisionTreeConfig()

    def lookup_fee(
        self,
        cpt_code: str,
        payer_id: str,
        place_of_service: Optional[str] = None,
    ) -> FeeScheduleResult:
        """
        Resolve the applied rate for a procedure code.

        Args:
            cpt_code: CPT or HCPCS code
            payer_id: Payer billed
            place_of_service: POS code, selects facility or non-facility RVUs

        Returns:
            FeeScheduleResult; ``applied_rate`` is never None
        """
        notes = []

        try:
            contracted = self._contracted_rate(cpt_code, payer_id)
        except Exception as e:
            logger.warning("Contracted rate lookup failed", extra={"cpt_code": cpt_code, "payer_id": payer_id, "error": str(e)})
            notes.append(f"Contracted rate lookup failed: {e}")
            contracted = None
        if contracted is not None:
            return contracted

        try:
            rbrvs = self.calculate_rbrvs_fee(cpt_code, payer_id, place_of_service)
        except Exception as e:
            logger.warning("RBRVS calculation failed", extra={"cpt_code": cpt_code, "payer_id": payer_id, "error": str(e)})
            notes.append(f"RBRVS calculation failed: {e}")
            rbrvs = None
        if rbrvs is not None:
            rbrvs.notes = notes + rbrvs.notes
            return rbrvs

        try:
            chargemaster = self._chargemaster_rate(cpt_code)
        except Exception as e:
            logger.warning("Chargemaster lookup failed", extra={"cpt_code": cpt_code, "error": str(e)})
            notes.append(f"Chargemaster lookup failed: {e}")
            return FeeScheduleResult(
                fee_found=False,
                applied_rate=self.config.default_base_rate,
                rate_source=RateSource.DEFAULT,
                notes=notes,
            )
        chargemaster.notes = notes + chargemaster.notes
        return chargemaster

    def calculate_rbrvs_fee(
        self,
        cpt_code: str,
        payer_id: str,
        place_of_service: Optional[str] = None,
    ) -> Optional[FeeScheduleResult]:
        """
        Calculate a fee from relative value units.

        Returns:
            FeeScheduleResult, or None when no usable RVU data exists
        """
        rvu = self.reference_data.get_rvu(cpt_code)
        if rvu is None:
            return None

        facility = is_facility_setting(place_of_service)
        total_rvu = rvu.total(facility=facility)
        if total_rvu <= 0:
            return None

        medicare_rate = total_rvu * self.config.conversion_factor * self.config.geographic_modifier
        payer_multiplier = self.get_payer_medicare_multiplier(payer_id)
        applied_rate = round(medicare_rate * payer_multiplier, 2)

        return FeeScheduleResult(
            fee_found=True,
            applied_rate=applied_rate,
            allowed_amount=applied_rate,
            rate_source=RateSource.MEDICARE if payer_multiplier == 1.0 else RateSource.RBRVS,
            total_rvu=total_rvu,
            payer_multiplier=payer_multiplier,
            notes=[
                f"{total_rvu:.2f} {'facility' if facility else 'non-facility'} RVUs × "
                f"CF ${self.config.conversion_factor} × {payer_multiplier}"
            ],
        )

    def get_payer_medicare_multiplier(self, payer_id: str) -> float:
        """
        Get the payer's rate as a multiple of Medicare.

        Uses the multiplier on file when present; otherwise matches the payer
        id against known payer types (Medicaid ~0.7×, commercial ~1.3-1.4×).
        """
        try:
            multiplier = self.reference_data.get_payer_medicare_multiplier(payer_id)
        except Exception as e:
            logger.warning("Payer multiplier lookup failed", extra={"payer_id": payer_id, "error": str(e)})
            return self.config.default_payer_multiplier

        if multiplier:
            return multiplier

        payer_key = payer_id.lower()
        for payer_type, type_multiplier in self.config.payer_type_multipliers.items():
            if payer_type in payer_key:
                return type_multiplier
        return self.config.default_payer_multiplier

    def _contracted_rate(self, cpt_code: str, payer_id: str) -> Optional[FeeScheduleResult]:
        item = self.reference_data.get_fee_schedule_item(payer_id, cpt_code)
        if item is None or not item.amount:
            return None
        return FeeScheduleResult(
            fee_found=True,
            contracted_rate=item.amount,
            applied_rate=item.amount,
            allowed_amount=item.amount,
            rate_source=RateSource.CONTRACTED,
        )

    def _chargemaster_rate(self, cpt_code: str) -> FeeScheduleResult:
        known_code = self.reference_data.get_procedure_code(cpt_code) is not None
        applied_rate = self.config.default_base_rate
        if known_code:
            applied_rate *= self.config.chargemaster_multiplier
        return FeeScheduleResult(
            fee_found=True,
            chargemaster_rate=applied_rate,
            applied_rate=applied_rate,
            rate_source=RateSource.CHARGEMASTER,
        )
