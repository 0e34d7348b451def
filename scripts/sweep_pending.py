#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from pathlib import Path

from deck_automation.config import settings
from deck_automation.services import credential_store
from deck_automation.services.gamma_client import GammaClient
from deck_automation.services.reconciliation import sweep_tracking_sheets
from deck_automation.services.tracking_store import tracking_store_from_tokens


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-check pending Gamma generations in tracking sheets.")
    parser.add_argument(
        "--sheet",
        action="append",
        default=[],
        metavar="SPREADSHEET_ID",
        help="Tracking spreadsheet id to sweep (repeatable; default: TRACKING_SHEETS setting).",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Optional output JSON path.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    sheets = [{"id": sheet_id, "name": ""} for sheet_id in args.sheet] or settings.tracking_sheets
    if not sheets:
        print("No tracking sheets configured.")
        return 0

    tokens = credential_store.google_tokens()
    if not tokens:
        print("No stored Google tokens; save them through /api/save-key first.")
        return 1

    result = sweep_tracking_sheets(
        tracking_store_from_tokens(tokens),
        GammaClient(credential_store.gamma_api_key()),
        sheets,
    ).as_dict()

    print(f"Sheets: {len(result['results'])}")
    print(f"Checked: {result['totalChecked']}")
    print(f"Updated: {result['totalUpdated']}")
    for row in result["results"]:
        suffix = f" error={row['error']}" if row.get("error") else ""
        print(f"- {row['spreadsheetId']} checked={row['checked']} updated={row['updated']}{suffix}")

    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(json.dumps(result, indent=2), encoding="utf-8")
        print(f"Wrote: {args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
