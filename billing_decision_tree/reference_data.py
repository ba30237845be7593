"""
Reference data records and the lookup port used by the decision tree.

The decision tree only reads reference data. ``ReferenceDataPort`` declares
the queries it needs; ``InMemoryReferenceData`` is a dictionary-backed
implementation that can be populated in code or loaded from JSON/CSV tables.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional
import json

import pandas as pd


class ReferenceDataError(Exception):
    """Raised when reference data cannot be read."""


@dataclass
class PatientInsurance:
    """Insurance record for a patient."""

    patient_id: str
    insurance_payer_id: str
    insurance_status: str
    insurance_member_id: Optional[str] = None
    plan_name: Optional[str] = None


@dataclass
class ProcedureCode:
    """CPT/HCPCS reference entry."""

    code: str
    short_desc: str
    long_desc: Optional[str] = None
    status: str = "active"

    @property
    def description(self) -> str:
        return self.long_desc or self.short_desc or ""


@dataclass
class DiagnosisCode:
    """ICD-10-CM reference entry."""

    code: str
    description: str
    billable: bool = True
    status: str = "active"


@dataclass
class CodingRule:
    """Coverage rule linking a procedure code to diagnosis code patterns."""

    cpt_code: str
    required_icd10_patterns: List[str] = field(default_factory=list)
    excluded_icd10_patterns: List[str] = field(default_factory=list)
    primary_diagnosis_only: bool = False
    source: Optional[str] = None  # "ncd" or "lcd"
    reference_url: Optional[str] = None
    active: bool = True


@dataclass
class FeeScheduleItem:
    """Contracted rate for a payer and code."""

    payer_id: str
    code: str
    amount: float
    code_type: str = "CPT"


@dataclass
class RVUData:
    """Relative Value Unit data for a procedure code."""

    procedure_code: str
    description: str

    # Non-Facility (Office) RVUs
    work_rvu_nf: float
    pe_rvu_nf: float
    mp_rvu_nf: float

    # Facility (Hospital) RVUs
    work_rvu_f: float
    pe_rvu_f: float
    mp_rvu_f: float

    def total(self, facility: bool = False) -> float:
        """Sum of work, practice expense and malpractice RVUs."""
        if facility:
            return self.work_rvu_f + self.pe_rvu_f + self.mp_rvu_f
        return self.work_rvu_nf + self.pe_rvu_nf + self.mp_rvu_nf


@dataclass
class PayerRecord:
    payer_id: str
    name: str
    medicare_multiplier: Optional[float] = None


@dataclass
class EncounterRecord:
    """A previously billed encounter, used for new/established determination."""

    patient_id: str
    provider_id: str
    encounter_date: date


class ReferenceDataPort(ABC):
    """Read-only queries the decision tree issues against reference data."""

    @abstractmethod
    def get_patient_insurance(self, patient_id: str, payer_id: str) -> Optional[PatientInsurance]:
        """Return the patient's insurance record, or None if the patient is unknown."""

    @abstractmethod
    def get_procedure_code(self, code: str) -> Optional[ProcedureCode]:
        """Return the procedure code entry regardless of status."""

    @abstractmethod
    def search_procedure_codes(self, description: str, limit: int = 1) -> List[ProcedureCode]:
        """Return active procedure codes whose description contains ``description``."""

    @abstractmethod
    def get_diagnosis_code(self, code: str) -> Optional[DiagnosisCode]:
        """Return the diagnosis code entry regardless of status."""

    @abstractmethod
    def search_diagnosis_codes(self, term: str, limit: int = 1) -> List[DiagnosisCode]:
        """Return active, billable diagnosis codes whose description contains ``term``."""

    @abstractmethod
    def get_coding_rules(self, cpt_code: str) -> List[CodingRule]:
        """Return active coding rules for a procedure code."""

    @abstractmethod
    def get_fee_schedule_item(self, payer_id: str, code: str) -> Optional[FeeScheduleItem]:
        """Return the contracted rate for a payer and code."""

    @abstractmethod
    def get_rvu(self, procedure_code: str) -> Optional[RVUData]:
        """Return RVU data for a procedure code."""

    @abstractmethod
    def get_payer_medicare_multiplier(self, payer_id: str) -> Optional[float]:
        """Return the payer's explicit Medicare multiplier, if one is on file."""

    @abstractmethod
    def has_prior_encounter(
        self,
        patient_id: str,
        provider_id: str,
        since: date,
        before: date,
    ) -> bool:
        """Whether the patient saw the provider on or after ``since`` and before ``before``."""


class InMemoryReferenceData(ReferenceDataPort):
    """
    Dictionary-backed reference data.

    Tables can be populated with the ``add_*`` methods or loaded from a
    directory with ``load_from_directory``.
    """

    def __init__(self):
        self.patients: Dict[str, PatientInsurance] = {}
        self.procedure_codes: Dict[str, ProcedureCode] = {}
        self.diagnosis_codes: Dict[str, DiagnosisCode] = {}
        self.coding_rules: Dict[str, List[CodingRule]] = {}
        self.fee_schedule: Dict[str, FeeScheduleItem] = {}
        self.rvu_data: Dict[str, RVUData] = {}
        self.payers: Dict[str, PayerRecord] = {}
        self.encounters: List[EncounterRecord] = []

    def add_patient(self, patient: PatientInsurance) -> None:
        self.patients[patient.patient_id] = patient

    def add_procedure_code(self, procedure: ProcedureCode) -> None:
        self.procedure_codes[procedure.code] = procedure

    def add_diagnosis_code(self, diagnosis: DiagnosisCode) -> None:
        self.diagnosis_codes[diagnosis.code] = diagnosis

    def add_coding_rule(self, rule: CodingRule) -> None:
        self.coding_rules.setdefault(rule.cpt_code, []).append(rule)

    def add_fee_schedule_item(self, item: FeeScheduleItem) -> None:
        self.fee_schedule[self._make_fee_key(item.payer_id, item.code)] = item

    def add_rvu(self, rvu: RVUData) -> None:
        self.rvu_data[rvu.procedure_code] = rvu

    def add_payer(self, payer: PayerRecord) -> None:
        self.payers[payer.payer_id] = payer

    def add_encounter(self, encounter: EncounterRecord) -> None:
        self.encounters.append(encounter)

    def get_patient_insurance(self, patient_id: str, payer_id: str) -> Optional[PatientInsurance]:
        return self.patients.get(patient_id)

    def get_procedure_code(self, code: str) -> Optional[ProcedureCode]:
        return self.procedure_codes.get(code)

    def search_procedure_codes(self, description: str, limit: int = 1) -> List[ProcedureCode]:
        needle = description.strip().lower()
        if not needle:
            return []
        matches = [
            proc for proc in self.procedure_codes.values()
            if proc.status == "active" and needle in proc.description.lower()
        ]
        return matches[:limit]

    def get_diagnosis_code(self, code: str) -> Optional[DiagnosisCode]:
        return self.diagnosis_codes.get(code)

    def search_diagnosis_codes(self, term: str, limit: int = 1) -> List[DiagnosisCode]:
        needle = term.strip().lower()
        if not needle:
            return []
        matches = [
            dx for dx in self.diagnosis_codes.values()
            if dx.billable and dx.status == "active" and needle in dx.description.lower()
        ]
        return matches[:limit]

    def get_coding_rules(self, cpt_code: str) -> List[CodingRule]:
        return [rule for rule in self.coding_rules.get(cpt_code, []) if rule.active]

    def get_fee_schedule_item(self, payer_id: str, code: str) -> Optional[FeeScheduleItem]:
        return self.fee_schedule.get(self._make_fee_key(payer_id, code))

    def get_rvu(self, procedure_code: str) -> Optional[RVUData]:
        return self.rvu_data.get(procedure_code)

    def get_payer_medicare_multiplier(self, payer_id: str) -> Optional[float]:
        payer = self.payers.get(payer_id)
        return payer.medicare_multiplier if payer else None

    def has_prior_encounter(
        self,
        patient_id: str,
        provider_id: str,
        since: date,
        before: date,
    ) -> bool:
        return any(
            enc.patient_id == patient_id
            and enc.provider_id == provider_id
            and since <= enc.encounter_date < before
            for enc in self.encounters
        )

    def load_from_directory(self, directory: Path) -> None:
        """
        Load reference tables from a directory.

        Each table is read from ``<table>.json`` (a list of objects) or, for
        flat tables, from ``<table>.csv``. Expected tables:
        - patients
        - procedure_codes
        - diagnosis_codes
        - coding_rules (JSON only)
        - fee_schedule
        - rvu_data
        - payers
        - encounters

        Args:
            directory: Path to directory containing data files

        Raises:
            ReferenceDataError: If a table file cannot be parsed
        """
        directory = Path(directory)

        loaders = [
            ("patients", PatientInsurance, self.add_patient),
            ("procedure_codes", ProcedureCode, self.add_procedure_code),
            ("diagnosis_codes", DiagnosisCode, self.add_diagnosis_code),
            ("coding_rules", CodingRule, self.add_coding_rule),
            ("fee_schedule", FeeScheduleItem, self.add_fee_schedule_item),
            ("rvu_data", RVUData, self.add_rvu),
            ("payers", PayerRecord, self.add_payer),
            ("encounters", EncounterRecord, self.add_encounter),
        ]

        for table, record_type, add in loaders:
            for row in self._read_table(directory, table, record_type):
                try:
                    record = record_type(**row)
                except TypeError as e:
                    raise ReferenceDataError(f"Invalid row in {table}: {e}") from e
                if isinstance(record, EncounterRecord) and isinstance(record.encounter_date, str):
                    record.encounter_date = date.fromisoformat(record.encounter_date)
                add(record)

    @staticmethod
    def _read_table(directory: Path, table: str, record_type) -> List[dict]:
        """Read one table as a list of row dictionaries."""
        json_file = directory / f"{table}.json"
        csv_file = directory / f"{table}.csv"

        if json_file.exists():
            try:
                with open(json_file, 'r') as f:
                    rows = json.load(f)
            except json.JSONDecodeError as e:
                raise ReferenceDataError(f"Malformed JSON in {json_file}: {e}") from e
            if not isinstance(rows, list):
                raise ReferenceDataError(f"{json_file} must contain a list of records")
            return rows

        if csv_file.exists() and record_type is not CodingRule:
            columns = {f.name for f in fields(record_type)}
            # Codes look numeric (99213) but must stay strings
            text_columns = {
                name: str for name in columns
                if name.endswith("_id") or name in ("code", "procedure_code", "status")
            }
            try:
                df = pd.read_csv(csv_file, dtype=text_columns)
            except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
                raise ReferenceDataError(f"Malformed CSV in {csv_file}: {e}") from e
            df = df[[c for c in df.columns if c in columns]]
            df = df.astype(object).where(pd.notna(df), None)
            return df.to_dict(orient="records")

        return []

    @staticmethod
    def _make_fee_key(payer_id: str, code: str) -> str:
        return f"{payer_id}:{code}"


def create_default_reference_data() -> InMemoryReferenceData:
    """
    Create reference data with common codes and sample payers.

    Includes E/M codes for office, hospital, emergency and nursing facility
    settings, frequently billed procedures, common diagnoses and RVUs.

    Returns:
        InMemoryReferenceData with sample data loaded
    """
    data = InMemoryReferenceData()

    procedures = [
        # Office/outpatient - new patient
        ProcedureCode("99202", "Office visit, new, straightforward", "Office or other outpatient visit for a new patient, straightforward MDM"),
        ProcedureCode("99203", "Office visit, new, low", "Office or other outpatient visit for a new patient, low MDM"),
        ProcedureCode("99204", "Office visit, new, moderate", "Office or other outpatient visit for a new patient, moderate MDM"),
        ProcedureCode("99205", "Office visit, new, high", "Office or other outpatient visit for a new patient, high MDM"),
        # Office/outpatient - established patient
        ProcedureCode("99211", "Office visit, est, minimal", "Office or other outpatient visit for an established patient, minimal service"),
        ProcedureCode("99212", "Office visit, est, straightforward", "Office or other outpatient visit for an established patient, straightforward MDM"),
        ProcedureCode("99213", "Office visit, est, low", "Office or other outpatient visit for an established patient, low MDM"),
        ProcedureCode("99214", "Office visit, est, moderate", "Office or other outpatient visit for an established patient, moderate MDM"),
        ProcedureCode("99215", "Office visit, est, high", "Office or other outpatient visit for an established patient, high MDM"),
        ProcedureCode("99417", "Prolonged outpatient E/M", "Prolonged outpatient evaluation and management service, each 15 minutes"),
        # Hospital, emergency, nursing facility
        ProcedureCode("99221", "Initial hospital care, low", "Initial hospital inpatient care, straightforward or low MDM"),
        ProcedureCode("99222", "Initial hospital care, moderate", "Initial hospital inpatient care, moderate MDM"),
        ProcedureCode("99223", "Initial hospital care, high", "Initial hospital inpatient care, high MDM"),
        ProcedureCode("99231", "Subsequent hospital care, low", "Subsequent hospital inpatient care, straightforward or low MDM"),
        ProcedureCode("99232", "Subsequent hospital care, moderate", "Subsequent hospital inpatient care, moderate MDM"),
        ProcedureCode("99233", "Subsequent hospital care, high", "Subsequent hospital inpatient care, high MDM"),
        ProcedureCode("99281", "ED visit, minimal", "Emergency department visit, may not require a physician"),
        ProcedureCode("99282", "ED visit, straightforward", "Emergency department visit, straightforward MDM"),
        ProcedureCode("99283", "ED visit, low", "Emergency department visit, low MDM"),
        ProcedureCode("99284", "ED visit, moderate", "Emergency department visit, moderate MDM"),
        ProcedureCode("99285", "ED visit, high", "Emergency department visit, high MDM"),
        ProcedureCode("99304", "Initial nursing facility care, low", "Initial nursing facility care, straightforward or low MDM"),
        ProcedureCode("99305", "Initial nursing facility care, moderate", "Initial nursing facility care, moderate MDM"),
        ProcedureCode("99306", "Initial nursing facility care, high", "Initial nursing facility care, high MDM"),
        ProcedureCode("99307", "Subsequent nursing facility care, straightforward", "Subsequent nursing facility care, straightforward MDM"),
        ProcedureCode("99308", "Subsequent nursing facility care, low", "Subsequent nursing facility care, low MDM"),
        ProcedureCode("99309", "Subsequent nursing facility care, moderate", "Subsequent nursing facility care, moderate MDM"),
        ProcedureCode("99310", "Subsequent nursing facility care, high", "Subsequent nursing facility care, high MDM"),
        # Procedures, lab, imaging
        ProcedureCode("11102", "Tangntl bx skin single les", "Tangential biopsy of skin, single lesion"),
        ProcedureCode("12001", "Rpr s/n/ax/gen/trnk 2.5cm/<", "Simple repair of superficial wounds, 2.5 cm or less"),
        ProcedureCode("17000", "Destruct premalg lesion", "Destruction of premalignant lesion, first lesion"),
        ProcedureCode("20610", "Drain/inj joint/bursa w/o us", "Arthrocentesis, aspiration and/or injection, major joint or bursa"),
        ProcedureCode("36415", "Routine venipuncture", "Collection of venous blood by venipuncture"),
        ProcedureCode("71046", "X-ray exam chest 2 views", "Radiologic examination, chest; 2 views"),
        ProcedureCode("80053", "Comprehen metabolic panel", "Comprehensive metabolic panel"),
        ProcedureCode("83036", "Glycosylated hemoglobin test", "Hemoglobin; glycosylated (A1C)"),
        ProcedureCode("85025", "Complete cbc w/auto diff wbc", "Complete blood count (CBC) with automated differential"),
        ProcedureCode("93000", "Electrocardiogram complete", "Electrocardiogram, routine ECG with at least 12 leads; with interpretation and report"),
        ProcedureCode("96372", "Ther/proph/diag inj sc/im", "Therapeutic injection, subcutaneous or intramuscular"),
    ]
    for proc in procedures:
        data.add_procedure_code(proc)

    diagnoses = [
        DiagnosisCode("Z00.00", "Encounter for general adult medical examination without abnormal findings"),
        DiagnosisCode("I10", "Essential (primary) hypertension"),
        DiagnosisCode("E11.9", "Type 2 diabetes mellitus without complications"),
        DiagnosisCode("E11.65", "Type 2 diabetes mellitus with hyperglycemia"),
        DiagnosisCode("E78.5", "Hyperlipidemia, unspecified"),
        DiagnosisCode("J06.9", "Acute upper respiratory infection, unspecified"),
        DiagnosisCode("J45.909", "Unspecified asthma, uncomplicated"),
        DiagnosisCode("F41.1", "Generalized anxiety disorder"),
        DiagnosisCode("M54.50", "Low back pain, unspecified"),
        DiagnosisCode("M17.11", "Unilateral primary osteoarthritis, right knee"),
        DiagnosisCode("M17.12", "Unilateral primary osteoarthritis, left knee"),
        DiagnosisCode("D48.5", "Neoplasm of uncertain behavior of skin"),
        DiagnosisCode("R07.9", "Chest pain, unspecified"),
        DiagnosisCode("R73.03", "Prediabetes"),
        DiagnosisCode("E11", "Type 2 diabetes mellitus", billable=False),
    ]
    for dx in diagnoses:
        data.add_diagnosis_code(dx)

    rules = [
        CodingRule("83036", required_icd10_patterns=["E11.*", "E10.*", "R73.*"], source="lcd",
                   reference_url="https://www.cms.gov/medicare-coverage-database/view/lcd.aspx?lcdid=34813"),
        CodingRule("20610", required_icd10_patterns=["M17.*", "M25.5*", "M19.*"], source="lcd",
                   reference_url="https://www.cms.gov/medicare-coverage-database/view/lcd.aspx?lcdid=39240"),
        CodingRule("11102", required_icd10_patterns=["D48.5", "L82.*", "D22.*"], excluded_icd10_patterns=["Z00.*"]),
    ]
    for rule in rules:
        data.add_coding_rule(rule)

    sample_rvus = [
        # Office Visits - New Patient
        RVUData("99202", "Office visit, new patient, straightforward", 0.93, 1.12, 0.09, 0.93, 0.43, 0.09),
        RVUData("99203", "Office visit, new patient, low", 1.60, 1.52, 0.15, 1.60, 0.67, 0.15),
        RVUData("99204", "Office visit, new patient, moderate", 2.60, 2.03, 0.24, 2.60, 1.10, 0.24),
        RVUData("99205", "Office visit, new patient, high", 3.50, 2.54, 0.31, 3.50, 1.53, 0.31),
        # Office Visits - Established Patient
        RVUData("99211", "Office visit, established patient, minimal", 0.18, 0.61, 0.02, 0.18, 0.07, 0.02),
        RVUData("99212", "Office visit, established patient, straightforward", 0.70, 0.92, 0.05, 0.70, 0.29, 0.05),
        RVUData("99213", "Office visit, established patient, low", 1.30, 1.28, 0.10, 1.30, 0.52, 0.10),
        RVUData("99214", "Office visit, established patient, moderate", 1.92, 1.68, 0.14, 1.92, 0.79, 0.14),
        RVUData("99215", "Office visit, established patient, high", 2.80, 2.15, 0.21, 2.80, 1.17, 0.21),
        RVUData("99417", "Prolonged outpatient E/M, each 15 minutes", 0.61, 0.33, 0.05, 0.61, 0.25, 0.05),
        # Hospital and emergency
        RVUData("99223", "Initial hospital care, high", 3.50, 1.34, 0.33, 3.50, 1.34, 0.33),
        RVUData("99232", "Subsequent hospital care, moderate", 1.59, 0.62, 0.12, 1.59, 0.62, 0.12),
        RVUData("99284", "Emergency department visit, moderate", 2.74, 0.57, 0.30, 2.74, 0.57, 0.30),
        # Procedures
        RVUData("11102", "Tangential biopsy of skin, single lesion", 0.66, 2.67, 0.07, 0.66, 0.39, 0.07),
        RVUData("12001", "Simple repair, superficial wounds, 2.5 cm or less", 1.19, 4.82, 0.23, 1.19, 2.54, 0.23),
        RVUData("17000", "Destruction, premalignant lesion, first", 0.76, 2.94, 0.10, 0.76, 1.55, 0.10),
        RVUData("20610", "Arthrocentesis, major joint", 1.01, 4.67, 0.25, 1.01, 2.46, 0.25),
        RVUData("71046", "Chest X-ray, 2 views", 0.22, 6.41, 0.19, 0.22, 1.07, 0.19),
        RVUData("93000", "Electrocardiogram with interpretation", 0.17, 0.30, 0.02, 0.17, 0.30, 0.02),
        RVUData("96372", "Therapeutic injection, subcutaneous or intramuscular", 0.17, 0.98, 0.03, 0.17, 0.52, 0.03),
    ]
    for rvu in sample_rvus:
        data.add_rvu(rvu)

    for payer in [
        PayerRecord("medicare-part-b", "Medicare Part B", 1.0),
        PayerRecord("medicaid-state", "State Medicaid"),
        PayerRecord("aetna-ppo", "Aetna PPO"),
        PayerRecord("acme-health", "Acme Health Plan", 1.25),
    ]:
        data.add_payer(payer)

    data.add_fee_schedule_item(FeeScheduleItem("acme-health", "99213", 118.00))
    data.add_fee_schedule_item(FeeScheduleItem("acme-health", "99214", 165.00))

    # Sample patients
    data.add_patient(PatientInsurance("PT-1001", "medicare-part-b", "active", "1EG4-TE5-MK72", "Medicare Part B"))
    data.add_patient(PatientInsurance("PT-1002", "aetna-ppo", "terminated", "W123456789", "Aetna Open Access"))
    data.add_patient(PatientInsurance("PT-1003", "acme-health", "active", "ACM-55021", "Acme Gold PPO"))
    data.add_encounter(EncounterRecord("PT-1001", "PRV-200", date(2024, 3, 12)))

    return data
