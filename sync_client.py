"""
Device side of group sharing.

``SyncClient`` is a thin HTTP wrapper around the group endpoints that never
raises: every call returns an ``ApiResult`` (status 0 for transport failures).
``GroupSync`` layers the device flow on top: push encrypts a selected subset
and sends the last seen version; pull decrypts and merges into the full local
dataset. Nothing retries automatically; on ``VersionConflict`` the caller pulls,
merges and pushes again.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import requests

from config import GROUP_ID_PATTERN, SYNC_BASE_URL, SYNC_TIMEOUT
from errors import (
    BAD_ID, INTERNAL_ERROR, MESSAGE_ERROR_TYPES, MISSING_PASS, NETWORK_ERROR,
    NOTHING_SELECTED, STATUS_ERROR_TYPES,
)
from merge import MergeStats, merge_datasets
from records import validate_dataset
from results import Result
from share import build_subset, open_payload, seal_payload

logger = logging.getLogger(__name__)

GROUP_ID_RE = re.compile(GROUP_ID_PATTERN)


@dataclass
class ApiResult:
    ok: bool
    status: int
    body: dict = field(default_factory=dict)

    @property
    def message(self) -> str:
        if isinstance(self.body, dict) and self.body.get("error"):
            return str(self.body["error"])
        return f"HTTP {self.status}"

    @property
    def error_type(self) -> Optional[str]:
        if self.ok:
            return None
        if self.status == 0:
            return NETWORK_ERROR
        error = self.body.get("error") if isinstance(self.body, dict) else None
        return MESSAGE_ERROR_TYPES.get(error) or STATUS_ERROR_TYPES.get(self.status, INTERNAL_ERROR)


class SyncClient:
    def __init__(
        self,
        base_url: str = SYNC_BASE_URL,
        session=None,
        timeout: Optional[float] = SYNC_TIMEOUT,
        path: str = "/group",
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, params=None, headers=None, body=None) -> ApiResult:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                headers={"Content-Type": "application/json", **(headers or {})},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            return ApiResult(ok=False, status=0, body={"error": f"Network error: {e}"})

        try:
            parsed = resp.json()
        except ValueError:
            parsed = {"_raw": resp.text}
        if not isinstance(parsed, dict):
            parsed = {"_raw": parsed}
        return ApiResult(ok=200 <= resp.status_code < 300, status=resp.status_code, body=parsed)

    def create_group(self, group_id: str, group_pass: str) -> ApiResult:
        return self._request("POST", self.path, body={"id": group_id, "pass": group_pass})

    def pull(self, group_id: str, group_pass: str) -> ApiResult:
        return self._request("GET", self.path, params={"id": group_id}, headers={"x-pass": group_pass})

    def push(self, group_id: str, group_pass: str, payload, base_version: Optional[int] = None) -> ApiResult:
        body = {"version": (base_version or 0) + 1, "payload": payload}
        if base_version is not None:
            body["baseVersion"] = base_version
        return self._request("PUT", self.path, params={"id": group_id}, headers={"x-pass": group_pass}, body=body)

    def meta(self, group_id: str) -> ApiResult:
        return self._request("GET", f"{self.path}/meta", params={"id": group_id})


def _api_failure(api: ApiResult) -> Result:
    details = {"status": api.status}
    if isinstance(api.body, dict):
        details.update({k: v for k, v in api.body.items() if k != "error"})
    return Result.failure_result(api.message, error_type=api.error_type, error_details=details)


class GroupSync:
    """
    One device's view of one group.

    ``known_version`` is the last remote version this device pulled or pushed;
    it is sent as ``baseVersion`` so a stale push is rejected instead of
    overwriting someone else's update.
    """

    def __init__(
        self,
        client: SyncClient,
        group_id: str,
        group_pass: str,
        passphrase: Optional[str] = None,
        encryption_enabled: bool = False,
        known_version: Optional[int] = None,
    ):
        self.client = client
        self.group_id = group_id
        self.group_pass = group_pass
        self.passphrase = passphrase
        self.encryption_enabled = encryption_enabled
        self.known_version = known_version

    @classmethod
    def from_dataset(cls, client: SyncClient, dataset: dict, passphrase: Optional[str] = None, **kwargs) -> "GroupSync":
        settings = dataset.get("settings") or {}
        group = settings.get("group") or {}
        return cls(
            client,
            group.get("id", ""),
            group.get("pass", ""),
            passphrase=passphrase,
            encryption_enabled=bool(settings.get("encryptionEnabled")),
            **kwargs,
        )

    def _check_credentials(self) -> Optional[Result]:
        if not GROUP_ID_RE.fullmatch(self.group_id or ""):
            return Result.failure_result("Group name must be 3-40 of A-Z a-z 0-9 _ -", error_type=BAD_ID)
        if not self.group_pass:
            return Result.failure_result("Group password is required", error_type=MISSING_PASS)
        return None

    def create(self) -> Result[dict]:
        bad = self._check_credentials()
        if bad is not None:
            return bad
        api = self.client.create_group(self.group_id, self.group_pass)
        if not api.ok:
            return _api_failure(api)
        self.known_version = 1
        return Result.success_result(api.body)

    def push(self, dataset: dict, selected_ids: Iterable[str]) -> Result[int]:
        """Send only the selected patients (and their notes); returns the new remote version."""
        bad = self._check_credentials()
        if bad is not None:
            return bad
        ids = set(selected_ids)
        if not ids:
            return Result.failure_result("Select at least one patient to share", error_type=NOTHING_SELECTED)

        subset = build_subset(dataset, ids)
        payload = seal_payload(subset, self.passphrase, self.encryption_enabled)
        api = self.client.push(self.group_id, self.group_pass, payload, base_version=self.known_version)
        if not api.ok:
            return _api_failure(api)
        self.known_version = api.body.get("version", self.known_version)
        logger.info(
            "pushed %d patients / %d notes to %s (v%s)",
            len(subset["patients"]), len(subset["notes"]), self.group_id, self.known_version,
        )
        return Result.success_result(self.known_version)

    def pull(self, dataset: dict) -> Result[Tuple[dict, MergeStats]]:
        """Fetch the group payload and merge it into the full local dataset."""
        bad = self._check_credentials()
        if bad is not None:
            return bad
        local = validate_dataset(dataset)
        if not local.success:
            return local

        api = self.client.pull(self.group_id, self.group_pass)
        if not api.ok:
            return _api_failure(api)

        payload = api.body.get("payload")
        if payload is None:
            # nothing has been pushed to this group yet
            incoming = {"patients": [], "notes": []}
        else:
            opened = open_payload(payload, self.passphrase)
            if not opened.success:
                return opened
            incoming = opened.value

        merged, stats = merge_datasets(dataset, incoming)
        self.known_version = api.body.get("version", self.known_version)
        logger.info("pulled %s v%s: %s", self.group_id, self.known_version, stats.summary())
        return Result.success_result((merged, stats))

    def has_remote_changes(self) -> Result[bool]:
        """Compare the remote version with the last one seen here, without downloading the payload."""
        api = self.client.meta(self.group_id)
        if not api.ok:
            return _api_failure(api)
        remote = api.body.get("version")
        return Result.success_result(self.known_version is None or remote != self.known_version)
