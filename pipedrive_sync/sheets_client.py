from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pipedrive_sync.errors import ConfigurationError


@dataclass
class SheetsConfig:
    service_account_json: str
    spreadsheet_id: str
    range_a1: str = "Sheet1!A1:Z"


def fetch_sheet_values(cfg: SheetsConfig) -> List[List[str]]:
    creds = Credentials.from_service_account_file(
        cfg.service_account_json,
        scopes=["https://www.googleapis.com/auth/spreadsheets.readonly"],
    )
    service = build("sheets", "v4", credentials=creds)

    resp = service.spreadsheets().values().get(
        spreadsheetId=cfg.spreadsheet_id, range=cfg.range_a1
    ).execute()
    return resp.get("values", [])


def fetch_sheet_record(cfg: SheetsConfig, row_number: int) -> Dict[str, Any]:
    """
    Read one sheet row as an input record, keyed by the header row.
    row_number is the sheet row (row 1 holds the headers). Empty cells are left out.
    """
    if not cfg.service_account_json or not cfg.spreadsheet_id:
        raise ConfigurationError("Missing GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_SHEETS_SPREADSHEET_ID in .env")
    if row_number < 2:
        raise ConfigurationError(f"Sheet row must be 2 or greater (row 1 is the header), got {row_number}")

    try:
        values = fetch_sheet_values(cfg)
    except (OSError, ValueError, GoogleAuthError, HttpError) as e:
        raise ConfigurationError(f"Cannot read Google Sheet {cfg.spreadsheet_id}: {e}") from e
    if len(values) < row_number:
        raise ConfigurationError(f"Sheet row {row_number} is outside the range {cfg.range_a1}")

    headers = [h.strip() for h in values[0]]
    line = values[row_number - 1]
    return {
        header: cell
        for header, cell in zip(headers, line)
        if header and str(cell).strip() != ""
    }
