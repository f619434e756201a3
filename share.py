"""
Payloads that leave the device: group-share subsets and file exports, plus the
reverse direction (turning a pulled or imported document back into records).
"""
import json
from datetime import date
from typing import Iterable, Optional

from crypto import decrypt_json, encrypt_json, is_envelope
from errors import BAD_PASSWORD, BAD_PAYLOAD, LOCKED
from local_store import migrate_dataset, serialize
from records import now_iso, validate_dataset
from results import Result

EXPORT_TYPE = "pn_export"


def build_subset(dataset: dict, selected_ids: Iterable[str], updated_at: Optional[str] = None) -> dict:
    """
    Project the selected patients, and the notes that belong to them, into a
    share payload. Nothing outside the selection is included and nothing is
    ever marked deleted.
    """
    ids = set(selected_ids)
    return {
        "mode": "merge",
        "version": 1,
        "updatedAt": updated_at or now_iso(),
        "patients": [p for p in dataset.get("patients", []) if p.get("id") in ids],
        "notes": [n for n in dataset.get("notes", []) if n.get("patientId") in ids],
    }


def extract_incoming(payload) -> Result[dict]:
    """
    Normalise a pulled (already decrypted) payload to ``{"patients", "notes"}``.

    Accepts a share subset, a bare dataset, or a ``{"data": dataset}`` wrapper.
    """
    incoming = None
    if isinstance(payload, dict):
        data = payload.get("data")
        if payload.get("mode") == "merge" and ("patients" in payload or "notes" in payload):
            incoming = {"patients": payload.get("patients") or [], "notes": payload.get("notes") or []}
        elif "patients" in payload and "notes" in payload:
            incoming = {"patients": payload["patients"], "notes": payload["notes"]}
        elif isinstance(data, dict) and "patients" in data and "notes" in data:
            incoming = {"patients": data["patients"], "notes": data["notes"]}

    if incoming is None:
        return Result.failure_result("Payload has no patients or notes", error_type=BAD_PAYLOAD)
    return validate_dataset(incoming)


def open_payload(payload, password: Optional[str]) -> Result[dict]:
    """Decrypt ``payload`` if it is an envelope, then normalise it."""
    if is_envelope(payload):
        if not password:
            return Result.failure_result("Payload is encrypted; set a passphrase first", error_type=LOCKED)
        text = decrypt_json(payload, password)
        if text is None:
            return Result.failure_result("Could not decrypt payload", error_type=BAD_PASSWORD)
        try:
            payload = json.loads(text)
        except ValueError:
            return Result.failure_result("Decrypted payload is not JSON", error_type=BAD_PAYLOAD)
    return extract_incoming(payload)


def seal_payload(payload: dict, password: Optional[str], encryption_enabled: bool):
    if encryption_enabled and password:
        return encrypt_json(serialize(payload), password)
    return payload


# ----- file export / import -----
def build_export(dataset: dict, password: Optional[str] = None, encryption_enabled: bool = False):
    if encryption_enabled and password:
        return encrypt_json(serialize(dataset), password)
    return {"type": EXPORT_TYPE, "version": 1, "createdAt": now_iso(), "data": dataset}

def export_filename(encrypted: bool, day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"patient-notes-{'enc-' if encrypted else ''}{day.isoformat()}.json"

def read_import(obj, password: Optional[str] = None) -> Result[dict]:
    """Turn an export document (encrypted, wrapped, or bare) into a full dataset."""
    if is_envelope(obj):
        if not password:
            return Result.failure_result("Export is encrypted; password required", error_type=LOCKED)
        text = decrypt_json(obj, password)
        if text is None:
            return Result.failure_result("Wrong password", error_type=BAD_PASSWORD)
        try:
            obj = json.loads(text)
        except ValueError:
            return Result.failure_result("Export is not JSON", error_type=BAD_PAYLOAD)

    if isinstance(obj, dict) and obj.get("type") == EXPORT_TYPE:
        obj = obj.get("data")
    if not isinstance(obj, dict):
        return Result.failure_result("Export does not contain a dataset", error_type=BAD_PAYLOAD)

    dataset = migrate_dataset(obj)
    checked = validate_dataset(dataset)
    if not checked.success:
        return checked
    return Result.success_result(dataset)
