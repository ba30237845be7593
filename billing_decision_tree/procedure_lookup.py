"""
Procedure code resolution (Node C).
"""

from typing import Optional

from .models import ProcedurePerformed
from .reference_data import ReferenceDataPort
from .stage_models import ProcedureLookupResult


class ProcedureCodeResolver:
    """Resolves a documented procedure to an active CPT/HCPCS code. Never invents a code."""

    def __init__(self, reference_data: ReferenceDataPort):
        self.reference_data = reference_data

    def lookup(self, procedure: Optional[ProcedurePerformed]) -> ProcedureLookupResult:
        """
        Look up the billing code for a procedure.

        An explicit code is accepted only if it exists and is active;
        otherwise the description is searched. Anything unmatched is
        reported as an unlisted procedure.

        Args:
            procedure: The first documented procedure, if any

        Returns:
            ProcedureLookupResult
        """
        if procedure is None:
            return ProcedureLookupResult(found=False, is_unlisted_procedure=True)

        suggested = list(procedure.modifiers)

        if procedure.cpt_code:
            entry = self.reference_data.get_procedure_code(procedure.cpt_code)
            if entry is not None and entry.status == "active":
                return ProcedureLookupResult(
                    found=True,
                    cpt_code=entry.code,
                    cpt_description=entry.description,
                    suggested_modifiers=suggested,
                    matched_by="code",
                )

        if procedure.description:
            matches = self.reference_data.search_procedure_codes(procedure.description, limit=1)
            if matches:
                return ProcedureLookupResult(
                    found=True,
                    cpt_code=matches[0].code,
                    cpt_description=matches[0].description,
                    suggested_modifiers=suggested,
                    matched_by="description",
                )

        return ProcedureLookupResult(found=False, is_unlisted_procedure=True)
