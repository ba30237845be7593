"""
Billing Decision Tree

Automated medical claim coding: turns a clinical encounter into a billable
claim line (procedure code, modifiers, diagnoses and billed amount) with a
full audit trail of the decisions made, or defers it to manual review.
"""

from .models import (
    BillableClaimLine,
    DecisionNode,
    DecisionTreeResult,
    EncounterInput,
    EncounterType,
    PresentingDiagnosis,
    ProcedurePerformed,
    ServiceCircumstance,
    ValidationIssue,
)
from .config import DecisionTreeConfig
from .decision_tree import BillingDecisionTree
from .reference_data import InMemoryReferenceData, ReferenceDataPort, create_default_reference_data
from .sdoh import InMemorySocialRiskData, SocialRiskPort

__version__ = "1.0.0"
__all__ = [
    "BillableClaimLine",
    "DecisionNode",
    "DecisionTreeResult",
    "EncounterInput",
    "EncounterType",
    "PresentingDiagnosis",
    "ProcedurePerformed",
    "ServiceCircumstance",
    "ValidationIssue",
    "DecisionTreeConfig",
    "BillingDecisionTree",
    "InMemoryReferenceData",
    "ReferenceDataPort",
    "create_default_reference_data",
    "InMemorySocialRiskData",
    "SocialRiskPort",
]
