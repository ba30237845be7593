#!/usr/bin/env python
"""
Command-line interface for the billing decision tree.

Quick tool for coding encounters and checking E/M levels, codes and fees.
"""

import argparse
import logging
import sys

from pydantic import ValidationError

from billing_decision_tree import BillingDecisionTree, DecisionTreeConfig, EncounterInput
from billing_decision_tree.em_leveling import determine_time_based_level, generate_em_code
from billing_decision_tree.fee_resolver import FeeResolver
from billing_decision_tree.logging_config import configure_logging
from billing_decision_tree.prolonged_services import check_prolonged_services
from billing_decision_tree.reference_data import InMemoryReferenceData, ReferenceDataError, create_default_reference_data


def _load_reference_data(args):
    if getattr(args, 'data_dir', None):
        data = InMemoryReferenceData()
        data.load_from_directory(args.data_dir)
        return data
    return create_default_reference_data()


def _load_config(args):
    if getattr(args, 'config', None):
        return DecisionTreeConfig.from_json_file(args.config)
    return DecisionTreeConfig()


def process_encounter(args):
    """Run an encounter file through the decision tree."""
    try:
        with open(args.encounter, 'r') as f:
            encounter = EncounterInput.model_validate_json(f.read())
        tree = BillingDecisionTree(reference_data=_load_reference_data(args), config=_load_config(args))
    except (OSError, ValidationError, ReferenceDataError) as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        sys.exit(1)

    result = tree.process_encounter(encounter)

    if args.json:
        print(result.model_dump_json(indent=2))
        return

    print("\n" + "=" * 60)
    print("BILLING DECISION RESULT")
    print("=" * 60)
    for node in result.decisions:
        print(f"[{node.node_id}] {node.node_name}")
        print(f"  Q: {node.question}")
        print(f"  A: {node.answer} -> {node.result.value}")
        print(f"  {node.rationale}")
    print()

    if result.success:
        for line in result.all_claim_lines:
            modifiers = f"-{'-'.join(line.cpt_modifiers)}" if line.cpt_modifiers else ""
            print(f"Claim Line:  {line.cpt_code}{modifiers} x{line.units}  "
                  f"Dx: {', '.join(line.icd10_codes)}  ${line.billed_amount:.2f}")
        print()
        print(f"TOTAL BILLED:  ${result.total_billed:.2f}")
    elif result.requires_manual_review:
        print(f"MANUAL REVIEW: {result.manual_review_reason}")
    else:
        print("DENIED")

    for issue in result.validation_errors + result.warnings:
        print(f"  {issue.severity.value.upper()} {issue.code}: {issue.message}")
    print("=" * 60)
    print()


def em_level(args):
    """Show the time-based E/M level and code for a visit."""
    level, missing = determine_time_based_level(args.time, args.new_patient)
    code = generate_em_code(level, args.new_patient, args.pos)
    prolonged = check_prolonged_services(code, args.time, True) if code else None

    print("\n" + "=" * 60)
    print("E/M LEVEL")
    print("=" * 60)
    print(f"Total Time:      {args.time} minutes")
    print(f"Patient Status:  {'New' if args.new_patient else 'Established'}")
    print(f"Place of Service: {args.pos}")
    print(f"Level:           {level}")
    print(f"E/M Code:        {code or 'None'}")
    if prolonged is not None and prolonged.applies:
        print(f"Prolonged:       {prolonged.additional_cpt} x{prolonged.units} (+{prolonged.extra_time} min)")
    for element in missing:
        print(f"\nNote: {element}")
    print("=" * 60)
    print()


def lookup_procedure(args):
    """Look up procedure information."""
    data = _load_reference_data(args)
    procedure = data.get_procedure_code(args.procedure)

    if procedure is None:
        print(f"\nERROR: Procedure code {args.procedure} not found", file=sys.stderr)
        sys.exit(1)

    print("\n" + "=" * 60)
    print("PROCEDURE INFORMATION")
    print("=" * 60)
    print(f"Code:        {procedure.code}")
    print(f"Description: {procedure.description}")
    print(f"Status:      {procedure.status}")

    rvu = data.get_rvu(procedure.code)
    if rvu is not None:
        print()
        print("Non-Facility RVUs:")
        print(f"  Work: {rvu.work_rvu_nf:.4f}")
        print(f"  PE:   {rvu.pe_rvu_nf:.4f}")
        print(f"  MP:   {rvu.mp_rvu_nf:.4f}")
        print()
        print("Facility RVUs:")
        print(f"  Work: {rvu.work_rvu_f:.4f}")
        print(f"  PE:   {rvu.pe_rvu_f:.4f}")
        print(f"  MP:   {rvu.mp_rvu_f:.4f}")

    rules = data.get_coding_rules(procedure.code)
    if rules:
        print()
        print("Coverage Rules:")
        for rule in rules:
            source = f" [{rule.source.upper()}]" if rule.source else ""
            print(f"  Requires: {', '.join(rule.required_icd10_patterns) or 'any'}{source}")
            if rule.excluded_icd10_patterns:
                print(f"  Excludes: {', '.join(rule.excluded_icd10_patterns)}")
    print("=" * 60)
    print()


def lookup_fee(args):
    """Resolve the fee for a procedure and payer."""
    resolver = FeeResolver(_load_reference_data(args), _load_config(args))
    fee = resolver.lookup_fee(args.procedure, args.payer, args.pos)

    print("\n" + "=" * 60)
    print("FEE SCHEDULE RESULT")
    print("=" * 60)
    print(f"Procedure Code:  {args.procedure}")
    print(f"Payer:           {args.payer}")
    print(f"Place of Service: {args.pos}")
    print(f"Rate Source:     {fee.rate_source.value}")
    if fee.total_rvu is not None:
        print(f"Total RVU:       {fee.total_rvu:.2f}")
        print(f"Payer Multiplier: {fee.payer_multiplier}")
    print()
    print(f"APPLIED RATE:    ${fee.applied_rate:.2f}")
    print("=" * 60)
    for note in fee.notes:
        print(f"\nNotes: {note}")
    print()


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Billing Decision Tree CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Code an encounter
  %(prog)s process encounter.json

  # Code an encounter against custom reference tables
  %(prog)s process encounter.json --data-dir ./reference --json

  # E/M level for a 32 minute established patient visit
  %(prog)s em-level --time 32

  # Look up procedure information
  %(prog)s lookup-procedure 20610

  # Fee for an office visit billed to Medicaid
  %(prog)s fee 99213 --payer medicaid-state
        """
    )
    parser.add_argument('--log-level', default='WARNING', help='Log level (default: WARNING)')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Process command
    process_parser = subparsers.add_parser('process', help='Code an encounter from a JSON file')
    process_parser.add_argument('encounter', help='Path to encounter JSON file')
    process_parser.add_argument('--data-dir', help='Directory of reference data tables')
    process_parser.add_argument('--config', help='Path to decision tree config JSON file')
    process_parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    process_parser.set_defaults(func=process_encounter)

    # E/M level command
    em_parser = subparsers.add_parser('em-level', help='Time-based E/M level for a visit')
    em_parser.add_argument('--time', type=int, required=True, help='Total time in minutes')
    em_parser.add_argument('--new-patient', action='store_true', help='Patient is new to the provider')
    em_parser.add_argument('--pos', default='11', help='Place of service (default: 11 - Office)')
    em_parser.set_defaults(func=em_level)

    # Lookup procedure command
    lookup_proc_parser = subparsers.add_parser('lookup-procedure', help='Look up procedure information')
    lookup_proc_parser.add_argument('procedure', help='CPT/HCPCS procedure code')
    lookup_proc_parser.add_argument('--data-dir', help='Directory of reference data tables')
    lookup_proc_parser.set_defaults(func=lookup_procedure)

    # Fee command
    fee_parser = subparsers.add_parser('fee', help='Resolve the fee for a procedure')
    fee_parser.add_argument('procedure', help='CPT/HCPCS procedure code')
    fee_parser.add_argument('--payer', required=True, help='Payer identifier')
    fee_parser.add_argument('--pos', default='11', help='Place of service (default: 11 - Office)')
    fee_parser.add_argument('--data-dir', help='Directory of reference data tables')
    fee_parser.add_argument('--config', help='Path to decision tree config JSON file')
    fee_parser.set_defaults(func=lookup_fee)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(level=getattr(logging, args.log_level.upper(), logging.WARNING))
    args.func(args)


if __name__ == '__main__':
    main()
