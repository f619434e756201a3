import getpass
import json
import sys
from pathlib import Path
from typing import List, Optional

from config import LOCAL_STORE_DIR, SYNC_BASE_URL, configure_logging
from errors import BAD_PASSWORD, LOCKED, VERSION_CONFLICT
from local_store import LocalStore
from records import (
    HISTORY_FIELDS, SOAP_KEYS, VITAL_KEYS,
    add_note, add_patient, new_note, new_patient, notes_for_patient, now_iso, parse_tags,
    remove_note, remove_patient, search_patients, set_group, set_settings, update_note, update_patient,
    visible_notes,
)
from share import build_export, export_filename, read_import
from sync_client import GroupSync, SyncClient

# ---------- basic io ----------
def input_safe(prompt: str) -> str:
    return input(prompt)

def input_password(prompt: str) -> str:
    return getpass.getpass(prompt)

def notify(message: str):
    print(message)

def confirm(question: str) -> bool:
    return input_safe(question + " [y/N]: ").strip().lower().startswith("y")


def parse_selection(text: str, count: int) -> List[int]:
    """'1,3 5' or 'all' -> zero-based indexes; out-of-range entries are ignored."""
    text = text.strip().lower()
    if text in ("all", "*"):
        return list(range(count))
    picked = []
    for part in text.replace(",", " ").split():
        if part.isdigit() and 1 <= int(part) <= count and int(part) - 1 not in picked:
            picked.append(int(part) - 1)
    return picked


class Device:
    """The in-memory dataset plus the passphrase that protects it; every change is saved at once."""

    def __init__(self, store: LocalStore, client: SyncClient):
        self.store = store
        self.client = client
        self.passphrase: Optional[str] = None
        self.dataset: dict = {}
        self.sync: Optional[GroupSync] = None

    def commit(self, dataset: dict):
        settings = dataset.get("settings") or {}
        saved = self.store.save(dataset, self.passphrase, bool(settings.get("encryptionEnabled")))
        if not saved.success:
            notify(f"Not saved: {saved.error}")
            return
        self.dataset = dataset

    def group_sync(self) -> GroupSync:
        group = self.dataset["settings"]["group"]
        if self.sync is None or (self.sync.group_id, self.sync.group_pass) != (group["id"], group["pass"]):
            self.sync = GroupSync.from_dataset(self.client, self.dataset, self.passphrase)
        self.sync.passphrase = self.passphrase
        self.sync.encryption_enabled = bool(self.dataset["settings"].get("encryptionEnabled"))
        return self.sync


# ---------- unlock ----------
def unlock(device: Device) -> bool:
    if device.store.is_encrypted():
        notify("Local data is encrypted.")
    res = device.store.load()
    while not res.success:
        if res.error_type in (LOCKED, BAD_PASSWORD):
            if res.error_type == BAD_PASSWORD:
                notify("Wrong password.")
            pw = input_password("Passphrase (blank = wipe/exit): ").strip()
            if not pw:
                if confirm("Wipe all data on this device?"):
                    device.store.clear()
                    res = device.store.load()
                    continue
                return False
            res = device.store.load(pw)
            if res.success:
                device.passphrase = pw
        else:
            notify(f"Cannot open local data: {res.error}")
            if not confirm("Wipe all data on this device?"):
                return False
            device.store.clear()
            res = device.store.load()
    device.dataset = res.value
    return True


# ---------- patients & notes ----------
def choose_patient(device: Device) -> Optional[dict]:
    if not device.dataset["patients"]:
        notify("No patients yet.")
        return None
    patients = search_patients(device.dataset, input_safe("Search name/HN/tag/cc/ud (blank = all): "))
    if not patients:
        notify("No match.")
        return None
    for i, p in enumerate(patients, 1):
        print(f"{i}) {p.get('name') or '(no name)'} - HN {p.get('hn') or '-'} {' '.join(p.get('tags') or [])}")
    picked = parse_selection(input_safe("Patient #: "), len(patients))
    return patients[picked[0]] if picked else None

def edit_patient(device: Device, patient: dict):
    changes = {}
    for key in ("name", "hn", "sex", "dob", "cc", "ud", "color"):
        value = input_safe(f"{key} [{patient.get(key, '')}] (blank=keep): ").strip()
        if value:
            changes[key] = value
    tags = input_safe(f"tags [{' '.join(patient.get('tags') or [])}] (blank=keep): ")
    if tags.strip():
        changes["tags"] = parse_tags(tags)
    history = {}
    if confirm("Edit history?"):
        for key in HISTORY_FIELDS:
            value = input_safe(f"  {key} (blank=keep): ").strip()
            if value:
                history[key] = value
    if changes or history:
        device.commit(update_patient(device.dataset, patient["id"], history=history, **changes))
        notify("Updated.")

def write_note(device: Device, patient: dict):
    author = input_safe("Author: ").strip()
    vitals = {}
    for k in VITAL_KEYS:
        value = input_safe(f"{k.upper()}: ").strip()
        if value:
            vitals[k] = value
    soap = {k: input_safe(f"{k}: ").strip() for k in SOAP_KEYS}
    meds = input_safe("Meds: ").strip()
    note = new_note(patient["id"], author=author, vitals=vitals, soap=soap, meds=meds)
    device.commit(add_note(device.dataset, note))
    notify("Note saved.")

def show_notes(device: Device, patient: dict) -> List[dict]:
    notes = notes_for_patient(device.dataset, patient["id"])
    for i, n in enumerate(notes, 1):
        soap = n.get("soap") or {}
        vitals = n.get("vitals") or {}
        print(f"{i}) {n.get('timestamp')} {n.get('author') or ''}")
        print("   " + "  ".join(f"{k.upper()}: {vitals.get(k) or '-'}" for k in VITAL_KEYS))
        for k in SOAP_KEYS:
            print(f"   {k}: {soap.get(k) or '-'}")
    if not notes:
        notify("No notes.")
    return notes

def patient_session(device: Device, patient: dict):
    while True:
        patient = next((p for p in device.dataset["patients"] if p["id"] == patient["id"]), None)
        if patient is None:
            return
        print(f"\n== {patient.get('name') or '(no name)'} ==")
        print("1) Edit details")
        print("2) Add note")
        print("3) View notes")
        print("4) Re-time a note")
        print("5) Delete a note")
        print("6) Delete patient")
        print("7) Back")
        choice = input_safe("Choose: ").strip()

        if choice == "1":
            edit_patient(device, patient)
        elif choice == "2":
            write_note(device, patient)
        elif choice == "3":
            show_notes(device, patient)
        elif choice in ("4", "5"):
            notes = show_notes(device, patient)
            picked = parse_selection(input_safe("Note #: "), len(notes)) if notes else []
            if not picked:
                continue
            note = notes[picked[0]]
            if choice == "4":
                when = input_safe("New timestamp (ISO-8601, blank=now): ").strip()
                device.commit(update_note(device.dataset, note["id"], timestamp=when or now_iso()))
            elif confirm("Delete this note?"):
                device.commit(remove_note(device.dataset, note["id"]))
        elif choice == "6":
            if confirm("Delete this patient and all their notes?"):
                device.commit(remove_patient(device.dataset, patient["id"]))
                return
        elif choice == "7":
            return
        else:
            print("Invalid choice.")


# ---------- group sharing ----------
def group_session(device: Device):
    while True:
        group = device.dataset["settings"]["group"]
        print(f"\n== Group '{group['id'] or '-'}' ({SYNC_BASE_URL}) ==")
        print("1) Set group name & password")
        print("2) Create group")
        print("3) Push selected patients")
        print("4) Pull & merge")
        print("5) Check for remote changes")
        print("6) Back")
        choice = input_safe("Choose: ").strip()

        if choice == "1":
            gid = input_safe("Group name (A-Z a-z 0-9 _ -): ").strip()
            gpass = input_password("Group password: ").strip()
            device.commit(set_group(device.dataset, gid, gpass))
        elif choice == "2":
            res = device.group_sync().create()
            notify("Group created." if res.success else f"Create failed: {res.error}")
        elif choice == "3":
            patients = device.dataset["patients"]
            for i, p in enumerate(patients, 1):
                print(f"{i}) {p.get('name') or '(no name)'} - HN {p.get('hn') or '-'}")
            picked = parse_selection(input_safe("Share which (e.g. 1,3 or all): "), len(patients))
            res = device.group_sync().push(device.dataset, [patients[i]["id"] for i in picked])
            if res.success:
                notify(f"Shared {len(picked)} patient(s); group is now at version {res.value}.")
            elif res.error_type == VERSION_CONFLICT:
                notify("Someone else updated the group first. Pull & merge, then push again.")
            else:
                notify(f"Push failed: {res.error}")
        elif choice == "4":
            res = device.group_sync().pull(device.dataset)
            if res.success:
                merged, stats = res.value
                device.commit(merged)
                notify(f"Merged: {stats.summary()}")
            else:
                notify(f"Pull failed: {res.error}")
        elif choice == "5":
            res = device.group_sync().has_remote_changes()
            if res.success:
                notify("Remote has changes." if res.value else "Up to date.")
            else:
                notify(f"Check failed: {res.error}")
        elif choice == "6":
            return
        else:
            print("Invalid choice.")


# ---------- settings ----------
def settings_session(device: Device):
    while True:
        enabled = device.dataset["settings"].get("encryptionEnabled")
        print(f"\n== Settings (encryption {'ON' if enabled else 'OFF'}) ==")
        print("1) Set / change passphrase")
        print("2) Toggle encryption")
        print("3) Export to file")
        print("4) Import from file (replaces local data)")
        print("5) Wipe all data on this device")
        print("6) Back")
        choice = input_safe("Choose: ").strip()

        if choice == "1":
            pw = input_password("New passphrase: ").strip()
            if pw and pw == input_password("Repeat: ").strip():
                device.passphrase = pw
                device.commit(device.dataset)
                notify("Passphrase set.")
            else:
                notify("Passphrases did not match.")
        elif choice == "2":
            if not enabled and not device.passphrase:
                notify("Set a passphrase first.")
                continue
            device.commit(set_settings(device.dataset, encryptionEnabled=not enabled))
        elif choice == "3":
            encrypted = bool(enabled and device.passphrase)
            doc = build_export(device.dataset, device.passphrase, bool(enabled))
            out = Path(input_safe(f"File [{export_filename(encrypted)}]: ").strip() or export_filename(encrypted))
            out.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")
            notify(f"Exported to {out.resolve()}")
        elif choice == "4":
            path = Path(input_safe("File: ").strip())
            try:
                obj = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                notify(f"Cannot read file: {e}")
                continue
            res = read_import(obj, device.passphrase)
            if res.error_type in (LOCKED, BAD_PASSWORD):
                res = read_import(obj, input_password("Export password: ").strip())
            if not res.success:
                notify(f"Import failed: {res.error}")
            elif confirm("Replace all local data with this file?"):
                device.commit(res.value)
                notify("Imported.")
        elif choice == "5":
            if confirm("Wipe ALL data on this device?"):
                device.store.clear()
                device.dataset = device.store.load().value
                device.passphrase = None
                notify("Wiped.")
        elif choice == "6":
            return
        else:
            print("Invalid choice.")


# ---------- main ----------
def main():
    configure_logging("WARNING")
    device = Device(LocalStore(), SyncClient())
    print("=== Patient Notes (local-first, group sync) ===")
    print(f"Local data: {LOCAL_STORE_DIR.resolve()}")
    if not unlock(device):
        print("Goodbye."); sys.exit(0)

    while True:
        print(f"\n{len(device.dataset['patients'])} patients, {len(visible_notes(device.dataset))} notes")
        print("1) Open patient")
        print("2) New patient")
        print("3) Group sharing")
        print("4) Settings")
        print("5) Exit")
        cmd = input_safe("Choose: ").strip()

        if cmd == "1":
            patient = choose_patient(device)
            if patient:
                patient_session(device, patient)
        elif cmd == "2":
            patient = new_patient(input_safe("Name: ").strip(), hn=input_safe("HN: ").strip())
            device.commit(add_patient(device.dataset, patient))
            patient_session(device, patient)
        elif cmd == "3":
            group_session(device)
        elif cmd == "4":
            settings_session(device)
        elif cmd == "5":
            print("Goodbye."); sys.exit(0)
        else:
            print("Invalid choice.")

if __name__ == "__main__":
    main()
