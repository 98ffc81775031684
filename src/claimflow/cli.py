"""claimflow CLI.

Usage:
    claimflow serve [--host HOST] [--port PORT]
    claimflow migrate [--revision REV]
    claimflow import-contracts [--input PATH]
    claimflow legacy-status STATUS [STATUS ...]
    claimflow lump-sum --option {A,B} [--beneficiary-class {ADULT,CHILD}]
    claimflow transitions [--from STATUS]

Output of the lookup commands is deterministic JSON on stdout.

Exit codes:
    0: Success
    1: Internal error
    2: Invalid input or missing configuration
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

from pydantic import ValidationError

from claimflow.models.claim import ClaimStatus
from claimflow.models.contract import BenefitOption, ContractRef
from claimflow.models.receipt import BeneficiaryClass
from claimflow.persistence.db import begin_app_conn, is_database_configured
from claimflow.workflow.claim_machine import allowed_targets
from claimflow.workflow.legacy import migrate_legacy_status
from claimflow.workflow.rules import lump_sum_amount

CLAIMFLOW_LOG_LEVEL_ENV = "CLAIMFLOW_LOG_LEVEL"

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    level = os.environ.get(CLAIMFLOW_LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error(code: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def _load_json_input(input_path: str | None) -> tuple[Any, str | None]:
    """Load JSON from file or stdin.

    Returns:
        Tuple of (parsed_data, error_message). If error_message is not None,
        parsed_data should be ignored.
    """
    try:
        if input_path:
            with open(input_path, encoding="utf-8") as f:
                content = f.read()
        else:
            content = sys.stdin.read()

        if not content.strip():
            return None, "Empty input"

        return json.loads(content), None
    except FileNotFoundError:
        return None, f"File not found: {input_path}"
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON: {e}"
    except OSError as e:
        return None, f"Cannot read input: {e}"


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    uvicorn.run(
        "claimflow.api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=os.environ.get(CLAIMFLOW_LOG_LEVEL_ENV, "info").lower(),
    )
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Upgrade the configured database to ``args.revision``."""
    from claimflow.persistence.migrations import run_upgrade

    if not is_database_configured():
        _output_json(_error("DATABASE_NOT_CONFIGURED", "Set CLAIMFLOW_DATABASE_URL"))
        return 2

    run_upgrade(revision=args.revision)
    logger.info("Database upgraded to %s", args.revision)
    _output_json({"revision": args.revision, "upgraded": True})
    return 0


def cmd_import_contracts(args: argparse.Namespace) -> int:
    """Upsert contract references from a JSON list into the SQL directory."""
    from claimflow.persistence.repositories.contracts import ContractDirectory

    if not is_database_configured():
        _output_json(_error("DATABASE_NOT_CONFIGURED", "Set CLAIMFLOW_DATABASE_URL"))
        return 2

    data, error = _load_json_input(args.input)
    if error is not None:
        _output_json(_error("INVALID_INPUT", error))
        return 2
    if not isinstance(data, list):
        _output_json(_error("INVALID_INPUT", "Expected a JSON list of contracts"))
        return 2

    try:
        contracts = [ContractRef.model_validate(item) for item in data]
    except ValidationError as e:
        _output_json(_error("INVALID_INPUT", str(e)))
        return 2

    with begin_app_conn() as conn:
        directory = ContractDirectory(conn)
        for contract in contracts:
            directory.upsert(contract)

    _output_json({"imported": len(contracts)})
    return 0


def cmd_legacy_status(args: argparse.Namespace) -> int:
    """Print the canonical status for each legacy or operational status."""
    mapping: dict[str, str] = {}
    for value in args.statuses:
        try:
            mapping[value] = migrate_legacy_status(value).value
        except ValueError as e:
            _output_json(_error("UNKNOWN_STATUS", str(e)))
            return 2
    _output_json(mapping)
    return 0


def cmd_lump_sum(args: argparse.Namespace) -> int:
    """Print the lump-sum benefit for an option and beneficiary class."""
    option = BenefitOption(args.option)
    beneficiary_class = BeneficiaryClass(args.beneficiary_class)
    _output_json(
        {
            "amount": lump_sum_amount(option, beneficiary_class),
            "beneficiary_class": beneficiary_class.value,
            "option": option.value,
        }
    )
    return 0


def cmd_transitions(args: argparse.Namespace) -> int:
    """Print the claim transition table, or the targets of one status."""
    statuses = [ClaimStatus(args.from_status)] if args.from_status else list(ClaimStatus)
    _output_json(
        {status.value: sorted(t.value for t in allowed_targets(status)) for status in statuses}
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="claimflow",
        description="claimflow - claim and settlement receipt workflow",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")

    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.add_argument(
        "--revision", default="head", help="Target revision (default: head)"
    )

    import_parser = subparsers.add_parser(
        "import-contracts",
        help="Sync contract references into the database",
    )
    import_parser.add_argument(
        "--input",
        required=False,
        default=None,
        metavar="PATH",
        help="Path to JSON list of contracts (reads from stdin if omitted)",
    )

    legacy_parser = subparsers.add_parser(
        "legacy-status",
        help="Map legacy receipt statuses onto the canonical states",
    )
    legacy_parser.add_argument("statuses", nargs="+", metavar="STATUS")

    lump_sum_parser = subparsers.add_parser("lump-sum", help="Look up a lump-sum benefit")
    lump_sum_parser.add_argument(
        "--option", required=True, choices=[o.value for o in BenefitOption]
    )
    lump_sum_parser.add_argument(
        "--beneficiary-class",
        default=BeneficiaryClass.ADULT.value,
        choices=[c.value for c in BeneficiaryClass],
    )

    transitions_parser = subparsers.add_parser(
        "transitions",
        help="Show the allowed claim transitions",
    )
    transitions_parser.add_argument(
        "--from",
        dest="from_status",
        default=None,
        choices=[s.value for s in ClaimStatus],
        help="Only show targets reachable from this status",
    )

    return parser


COMMANDS = {
    "serve": cmd_serve,
    "migrate": cmd_migrate,
    "import-contracts": cmd_import_contracts,
    "legacy-status": cmd_legacy_status,
    "lump-sum": cmd_lump_sum,
    "transitions": cmd_transitions,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Invalid input or missing configuration
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _configure_logging()
    try:
        return COMMANDS[args.command](args)
    except Exception as e:
        logger.error("Command %s failed: %s", args.command, e)
        _output_json(_error("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
