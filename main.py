from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from dotenv import dotenv_values

from pipedrive_sync.crm_client import PipedriveClient, PipedriveConfig
from pipedrive_sync.errors import ConfigurationError, SyncError
from pipedrive_sync.mapper import load_mapping
from pipedrive_sync.sheets_client import SheetsConfig, fetch_sheet_record
from pipedrive_sync.sync import plan_sync, sync_person

ENV_KEYS = (
    "PIPEDRIVE_API_KEY",
    "PIPEDRIVE_COMPANY_DOMAIN",
    "BASE_URL",
    "LOG_PATH",
    "GOOGLE_SERVICE_ACCOUNT_JSON",
    "GOOGLE_SHEETS_SPREADSHEET_ID",
    "GOOGLE_SHEETS_RANGE",
)

LOG_COLUMNS = ["timestamp", "name", "status", "person_id", "reason"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create or update one Pipedrive person from mapped input data")
    p.add_argument("--dry-run", action="store_true", help="Validate and show what would change")
    p.add_argument("--sync", action="store_true", help="Perform sync")
    p.add_argument("--mapping", default="mapping.csv", help="Mapping file: CSV pipedrive_key,input_key or JSON list")
    p.add_argument("--input", default="input.json", help="JSON file holding the input record")
    p.add_argument("--sheet-row", type=int, help="Read the input record from this Google Sheet row instead")
    p.add_argument("--env", default=".env", help="Path to the .env file")
    p.add_argument("--log-path", help="Sync log CSV (default: LOG_PATH or out/sync_log.csv)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def load_env(path: str) -> Dict[str, Optional[str]]:
    env = dict(dotenv_values(path))
    env.update({k: os.environ[k] for k in ENV_KEYS if k in os.environ})
    return env


def load_input(path: str) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Input file not found: {path}") from e
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read input file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Input file {path} must contain a JSON object")
    return data


def append_sync_log(log_path: Path, name: str, status: str, person_id: Any = None, reason: str = "") -> None:
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "name": name,
        "status": status,
        "person_id": "" if person_id is None else person_id,
        "reason": reason,
    }
    log_path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame([row], columns=LOG_COLUMNS).to_csv(
        log_path, mode="a", header=not log_path.exists(), index=False
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.dry_run == args.sync:
        print("Choose one: --dry-run or --sync")
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env = load_env(args.env)
    log_path = Path(args.log_path or env.get("LOG_PATH") or "out/sync_log.csv")

    try:
        crm_cfg = PipedriveConfig.from_env(env)
        mappings = load_mapping(args.mapping)
        if args.sheet_row is not None:
            sheets_cfg = SheetsConfig(
                service_account_json=env.get("GOOGLE_SERVICE_ACCOUNT_JSON") or "",
                spreadsheet_id=env.get("GOOGLE_SHEETS_SPREADSHEET_ID") or "",
                range_a1=env.get("GOOGLE_SHEETS_RANGE") or "Sheet1!A1:Z",
            )
            record = fetch_sheet_record(sheets_cfg, args.sheet_row)
        else:
            record = load_input(args.input)
    except ConfigurationError as e:
        print(e.message)
        return 2

    crm = PipedriveClient(crm_cfg)

    try:
        if args.dry_run:
            plan = plan_sync(record, mappings, crm)
        else:
            result = sync_person(record, mappings, crm)
    except SyncError as e:
        append_sync_log(log_path, getattr(e, "person_name", None) or "", "error", reason=e.message)
        print(f"Sync failed: {e.message}")
        return 1

    if args.dry_run:
        reason = f"would_{plan.action}"
        append_sync_log(log_path, plan.name, "dry_run", plan.existing_id, reason)
        target = f"would update person {plan.existing_id}" if plan.existing_id is not None else "would create person"
        print(f"Dry run: {target} with payload {json.dumps(plan.payload, ensure_ascii=False)}")
    else:
        person = result.record
        append_sync_log(log_path, str(person.get("name") or ""), result.action, person.get("id"))
        print(f"Synced person: {json.dumps(person, ensure_ascii=False)}")

    print(f"Done. Log saved to: {log_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
