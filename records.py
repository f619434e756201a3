"""
Dataset shape and mutation helpers.

Patients and notes are plain JSON-compatible dicts so that fields added by
other devices survive a round trip untouched. Every helper that changes a
dataset returns a new snapshot; the dataset passed in is never modified.
"""
import copy
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from errors import BAD_PAYLOAD
from results import Result

DEFAULT_COLOR = "#22c55e"
HISTORY_FIELDS = (
    "hpi", "pmh", "meds", "allergy", "surg", "family",
    "social", "gynObs", "menstrual", "sexual", "immun", "travel",
)
VITAL_KEYS = ("bp", "hr", "rr", "t", "sat")
SOAP_KEYS = ("S", "O", "A", "P")


def now_iso() -> str:
    # millisecond precision, "Z" suffix
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def new_id() -> str:
    return str(uuid.uuid4())

def parse_iso(value) -> float:
    """Epoch seconds for an ISO-8601 string (or epoch millis number); 0.0 if unusable."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) / 1000.0
    if not isinstance(value, str) or not value.strip():
        return 0.0
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()

def patient_freshness(patient: dict) -> float:
    return parse_iso(patient.get("updatedAt") or patient.get("createdAt"))

def note_freshness(note: dict) -> float:
    return parse_iso(note.get("timestamp"))


# ----- dataset -----
def default_group() -> dict:
    return {"id": "", "pass": ""}

def default_dataset() -> dict:
    return {
        "patients": [],
        "notes": [],
        "settings": {"encryptionEnabled": False, "group": default_group()},
    }

def validate_dataset(obj) -> Result[dict]:
    """Check the shape the merge engine relies on: two lists of records with unique ids."""
    if not isinstance(obj, dict):
        return Result.failure_result("Dataset must be an object", error_type=BAD_PAYLOAD)
    for name in ("patients", "notes"):
        items = obj.get(name)
        if not isinstance(items, list):
            return Result.failure_result(f"Missing '{name}' list", error_type=BAD_PAYLOAD)
        seen = set()
        for i, item in enumerate(items):
            if not isinstance(item, dict) or not item.get("id"):
                return Result.failure_result(
                    f"{name}[{i}] has no id", error_type=BAD_PAYLOAD, error_details={"index": i}
                )
            if item["id"] in seen:
                return Result.failure_result(
                    f"Duplicate id in {name}: {item['id']}",
                    error_type=BAD_PAYLOAD,
                    error_details={"id": item["id"]},
                )
            seen.add(item["id"])
    return Result.success_result(obj)

def set_settings(dataset: dict, **changes) -> dict:
    out = copy.deepcopy(dataset)
    out.setdefault("settings", {}).update(copy.deepcopy(changes))
    return out

def set_group(dataset: dict, group_id: str, group_pass: str) -> dict:
    return set_settings(dataset, group={"id": group_id, "pass": group_pass})


# ----- patients -----
def new_patient(name: str = "", **fields) -> dict:
    ts = now_iso()
    patient = {
        "id": new_id(),
        "name": name,
        "hn": "",
        "sex": "",
        "dob": "",
        "color": DEFAULT_COLOR,
        "tags": [],
        "cc": "",
        "ud": "",
        "history": {k: "" for k in HISTORY_FIELDS},
        "attachments": [],
        "createdAt": ts,
        "updatedAt": ts,
    }
    patient.update(fields)
    return patient

def get_patient(dataset: dict, patient_id: str) -> Optional[dict]:
    return next((p for p in dataset.get("patients", []) if p.get("id") == patient_id), None)

def add_patient(dataset: dict, patient: dict) -> dict:
    out = copy.deepcopy(dataset)
    out["patients"].append(copy.deepcopy(patient))
    return out

def update_patient(dataset: dict, patient_id: str, history: Optional[Dict[str, str]] = None, **changes) -> dict:
    """Apply field changes to one patient and stamp ``updatedAt``; ``history`` is patched key by key."""
    out = copy.deepcopy(dataset)
    for p in out["patients"]:
        if p.get("id") != patient_id:
            continue
        changes.pop("id", None)
        p.update(copy.deepcopy(changes))
        if history:
            p["history"] = {**(p.get("history") or {}), **history}
        p["updatedAt"] = now_iso()
        break
    else:
        raise KeyError(patient_id)
    return out

def remove_patient(dataset: dict, patient_id: str) -> dict:
    out = copy.deepcopy(dataset)
    out["patients"] = [p for p in out["patients"] if p.get("id") != patient_id]
    out["notes"] = [n for n in out["notes"] if n.get("patientId") != patient_id]
    return out

def parse_tags(text: str) -> List[str]:
    return text.split() if text and text.strip() else []

def search_patients(dataset: dict, query: str) -> List[dict]:
    """Case-insensitive substring match on name, HN, tags, chief complaint and underlying disease."""
    term = (query or "").strip().lower()
    patients = dataset.get("patients", [])
    if not term:
        return list(patients)

    def matches(p: dict) -> bool:
        fields = [p.get("name"), p.get("hn"), p.get("cc"), p.get("ud"), *(p.get("tags") or [])]
        return any(term in str(f or "").lower() for f in fields)

    return [p for p in patients if matches(p)]


# ----- notes -----
def new_note(patient_id: str, author: str = "", **fields) -> dict:
    ts = now_iso()
    note = {
        "id": new_id(),
        "patientId": patient_id,
        "timestamp": ts,
        "author": author,
        "vitals": {},
        "soap": {k: "" for k in SOAP_KEYS},
        "meds": "",
        "attachments": [],
        "createdAt": ts,
        "updatedAt": ts,
    }
    note.update(fields)
    return note

def add_note(dataset: dict, note: dict) -> dict:
    out = copy.deepcopy(dataset)
    out["notes"].insert(0, copy.deepcopy(note))
    return out

def update_note(dataset: dict, note_id: str, **changes) -> dict:
    """
    Apply field changes to one note and stamp ``updatedAt``.

    ``timestamp`` only moves when passed explicitly; it is the key the merge
    engine orders notes by.
    """
    out = copy.deepcopy(dataset)
    for n in out["notes"]:
        if n.get("id") != note_id:
            continue
        changes.pop("id", None)
        n.update(copy.deepcopy(changes))
        n["updatedAt"] = now_iso()
        break
    else:
        raise KeyError(note_id)
    return out

def remove_note(dataset: dict, note_id: str) -> dict:
    out = copy.deepcopy(dataset)
    out["notes"] = [n for n in out["notes"] if n.get("id") != note_id]
    return out

def notes_for_patient(dataset: dict, patient_id: str) -> List[dict]:
    notes = [n for n in dataset.get("notes", []) if n.get("patientId") == patient_id]
    return sorted(notes, key=note_freshness, reverse=True)

def visible_notes(dataset: dict) -> List[dict]:
    """Notes whose patient exists; orphans stay in the dataset but are not shown."""
    ids = {p.get("id") for p in dataset.get("patients", [])}
    return [n for n in dataset.get("notes", []) if n.get("patientId") in ids]
