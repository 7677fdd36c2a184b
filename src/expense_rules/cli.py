"""Command-line interface for the expense rule calculators."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .per_diem import PerDiemRateTable, TravelTrip, calculate_trip_per_diem
from .receipts import extract_line_items, should_suggest_split
from .transactions import ImportedTransaction, TransactionRuleMatcher


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expense-rules",
        description="Run per-diem, receipt and transaction rule calculations.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log rule decisions to stderr."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    per_diem = subparsers.add_parser(
        "per-diem", help="Calculate the per-diem allowance for a trip."
    )
    per_diem.add_argument("trip_json", type=Path, help="Path to a trip JSON file.")
    per_diem.add_argument(
        "--rates", type=Path, default=None, help="Per diem rates YAML file."
    )

    line_items = subparsers.add_parser(
        "line-items", help="Extract classified line items from OCR text."
    )
    line_items.add_argument("text_file", type=Path, help="Path to the OCR text.")

    match = subparsers.add_parser(
        "match", help="Classify imported transactions with transaction rules."
    )
    match.add_argument(
        "transactions_json", type=Path, help="Path to a JSON list of transactions."
    )
    match.add_argument(
        "--rules", type=Path, default=None, help="Transaction rules YAML file."
    )
    return parser


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Input file not found: {path}"
        raise FileNotFoundError(msg) from exc
    except OSError as exc:
        msg = f"Unable to read input file: {path}"
        raise OSError(msg) from exc


def _read_json(path: Path) -> Any:
    try:
        return json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in input file: {path}"
        raise ValueError(msg) from exc


def _run_per_diem(args: argparse.Namespace) -> dict[str, Any]:
    trip = TravelTrip.model_validate(_read_json(args.trip_json))
    table = PerDiemRateTable.from_file(args.rates)
    rate = table.lookup(
        trip.organization_id,
        trip.destination_city,
        trip.destination_country,
        state=trip.destination_state,
        on=trip.start_date,
    )
    if rate is None:
        msg = f"No per diem rate found for {trip.destination_city}"
        raise ValueError(msg)
    calculation = calculate_trip_per_diem(trip, rate)
    return {
        "trip_id": trip.trip_id,
        "rate": rate.model_dump(mode="json"),
        "calculation": calculation.model_dump(mode="json"),
    }


def _run_line_items(args: argparse.Namespace) -> dict[str, Any]:
    items = extract_line_items(_read_text(args.text_file))
    return {
        "line_items": [item.model_dump(mode="json") for item in items],
        "suggest_split": should_suggest_split(items),
    }


def _run_match(args: argparse.Namespace) -> list[dict[str, Any]]:
    payload = _read_json(args.transactions_json)
    if not isinstance(payload, list):
        raise ValueError("Transactions file must contain a JSON list")
    transactions = [ImportedTransaction.model_validate(item) for item in payload]
    matcher = TransactionRuleMatcher.from_file(args.rules)
    return [
        {
            "transaction_id": result.transaction.transaction_id,
            "status": result.transaction.status.value,
            "assigned_category": result.transaction.assigned_category,
            "is_reimbursable": result.transaction.is_reimbursable,
            "rule": result.action.rule_name if result.action else None,
            "auto_create_expense": result.create_expense_requested,
        }
        for result in matcher.apply_all(transactions)
    ]


_COMMANDS = {
    "per-diem": _run_per_diem,
    "line-items": _run_line_items,
    "match": _run_match,
}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )

    try:
        output = _COMMANDS[args.command](args)
    except ValidationError as exc:
        print("Error: input validation failed.", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
