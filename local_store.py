"""
Durable on-device persistence for the dataset.

The whole dataset is one JSON document under a single storage key, either in
plaintext or wrapped in an encrypted envelope. Writes overwrite the previous
blob atomically (temp file + rename). Expected failures (no password for an
encrypted blob, wrong password, unreadable blob) come back as ``Result``
failures, never as exceptions.
"""
import copy
import json
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from config import LEGACY_STORAGE_KEYS, LOCAL_STORE_DIR, STORAGE_KEY
from crypto import decrypt_json, encrypt_json, is_envelope
from errors import BAD_PASSWORD, CORRUPT_STORE, LOCKED, MISSING_PASSWORD
from records import default_dataset, default_group
from results import Result

logger = logging.getLogger(__name__)


def serialize(dataset: dict) -> str:
    return json.dumps(dataset, ensure_ascii=False, separators=(",", ":"))

def migrate_dataset(obj: dict) -> dict:
    """
    Bring any known older dataset shape up to the current one.

    v1 kept ``settings.group = {id, writeKey}`` and had no ``encryptionEnabled``;
    the current shape is ``settings = {encryptionEnabled, group: {id, pass}}``.
    """
    out = copy.deepcopy(obj)
    out.setdefault("patients", [])
    out.setdefault("notes", [])
    settings = out.get("settings")
    if not isinstance(settings, dict):
        settings = {}
    settings.setdefault("encryptionEnabled", False)
    group = settings.get("group")
    if not isinstance(group, dict):
        group = default_group()
    group.pop("writeKey", None)
    group.setdefault("id", "")
    group.setdefault("pass", "")
    settings["group"] = group
    out["settings"] = settings
    return out


class LocalStore:
    def __init__(
        self,
        directory: Path = LOCAL_STORE_DIR,
        key: str = STORAGE_KEY,
        legacy_keys: Sequence[str] = LEGACY_STORAGE_KEYS,
    ):
        self.directory = Path(directory)
        self.key = key
        self.legacy_keys = tuple(legacy_keys)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    @property
    def path(self) -> Path:
        return self.path_for(self.key)

    def exists(self) -> bool:
        return self.path.exists()

    def is_encrypted(self) -> bool:
        """True when the persisted blob is an envelope (the UI asks for a password first)."""
        raw = self._read(self.path)
        if raw is None:
            return False
        try:
            return is_envelope(json.loads(raw))
        except ValueError:
            return False

    # ----- load -----
    def load(self, password: Optional[str] = None) -> Result[dict]:
        raw = self._read(self.path)
        if raw is not None:
            return self._decode(raw, password)

        for legacy in self.legacy_keys:
            legacy_path = self.path_for(legacy)
            legacy_raw = self._read(legacy_path)
            if legacy_raw is None:
                continue
            res = self._decode(legacy_raw, password)
            if res.success:
                was_encrypted = is_envelope(json.loads(legacy_raw))
                saved = self.save(res.value, password, was_encrypted)
                if saved.success:
                    legacy_path.unlink(missing_ok=True)
                    logger.info("migrated local store %s -> %s", legacy, self.key)
            return res

        return Result.success_result(default_dataset())

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _decode(self, raw: str, password: Optional[str]) -> Result[dict]:
        try:
            obj = json.loads(raw)
        except ValueError:
            logger.warning("local store %s is not valid JSON", self.key)
            return Result.failure_result("Stored data is unreadable", error_type=CORRUPT_STORE)

        if is_envelope(obj):
            if not password:
                return Result.failure_result("Store is encrypted; password required", error_type=LOCKED)
            text = decrypt_json(obj, password)
            if text is None:
                return Result.failure_result("Wrong password", error_type=BAD_PASSWORD)
            try:
                obj = json.loads(text)
            except ValueError:
                return Result.failure_result("Decrypted data is unreadable", error_type=CORRUPT_STORE)

        if not isinstance(obj, dict):
            return Result.failure_result("Stored data is not a dataset", error_type=CORRUPT_STORE)
        return Result.success_result(migrate_dataset(obj))

    # ----- save / clear -----
    def save(self, dataset: dict, password: Optional[str], encryption_enabled: bool) -> Result[Path]:
        if encryption_enabled:
            if not password:
                return Result.failure_result(
                    "Encryption is enabled but no password is set", error_type=MISSING_PASSWORD
                )
            blob = json.dumps(encrypt_json(serialize(dataset), password))
        else:
            blob = serialize(dataset)

        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(blob, encoding="utf-8")
        os.replace(tmp, self.path)
        logger.debug("saved local store %s (encrypted=%s)", self.key, encryption_enabled)
        return Result.success_result(self.path)

    def clear(self):
        for key in (self.key, *self.legacy_keys):
            self.path_for(key).unlink(missing_ok=True)
        logger.info("local store wiped")
