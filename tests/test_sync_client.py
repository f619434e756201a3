"""Device-to-device sharing through the group endpoints."""
import pytest
import requests

from crypto import is_envelope
from errors import (
    BAD_ID, BAD_PASSWORD, FORBIDDEN, GROUP_EXISTS, LOCKED, MISSING_PASS, NETWORK_ERROR,
    NOT_FOUND, NOTHING_SELECTED, VERSION_CONFLICT,
)
from records import add_note, add_patient, default_dataset, get_patient, new_note, new_patient, update_patient
from sync_client import GroupSync, SyncClient


class BrokenSession:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError("connection refused")


@pytest.fixture
def device_a(sync_client):
    return GroupSync(sync_client, "ward_7", "pw")


@pytest.fixture
def device_b(sync_client):
    return GroupSync(sync_client, "ward_7", "pw")


def _raw_payload(client, gid="ward_7", pw="pw"):
    return client.get("/group", params={"id": gid}, headers={"x-pass": pw}).json()["payload"]


class TestSyncClient:
    def test_network_error_is_status_zero(self):
        api = SyncClient(base_url="http://nowhere", session=BrokenSession()).pull("ward_7", "pw")
        assert not api.ok
        assert api.status == 0
        assert api.error_type == NETWORK_ERROR

    def test_error_bodies_are_classified(self, sync_client):
        sync_client.create_group("ward_7", "pw")
        assert sync_client.create_group("ward_7", "pw").error_type == GROUP_EXISTS
        assert sync_client.pull("ward_7", "nope").error_type == FORBIDDEN
        assert sync_client.pull("nobody", "pw").error_type == NOT_FOUND
        assert sync_client.pull("x", "pw").error_type == BAD_ID

    def test_push_sends_base_version(self, sync_client):
        sync_client.create_group("ward_7", "pw")
        api = sync_client.push("ward_7", "pw", {"patients": [], "notes": []}, base_version=1)
        assert api.ok
        assert api.body == {"ok": True, "version": 2}


class TestGroupSync:
    def test_two_devices(self, client, device_a, device_b, dataset):
        assert device_a.create().success
        pushed = device_a.push(dataset, ["p1"])
        assert pushed.success
        assert pushed.value == 2

        res = device_b.pull(default_dataset())
        assert res.success
        merged, stats = res.value
        assert stats.as_dict() == {"newPatients": 1, "updatedPatients": 0, "newNotes": 1, "updatedNotes": 0}
        assert [p["id"] for p in merged["patients"]] == ["p1"]
        assert [n["id"] for n in merged["notes"]] == ["n1"]
        assert device_b.known_version == 2

    def test_only_selected_patients_leave_the_device(self, client, device_a):
        ds = default_dataset()
        for i in range(5):
            ds = add_patient(ds, new_patient(f"P{i}", id=f"p{i}"))
            ds = add_note(ds, new_note(f"p{i}", id=f"n{i}", author="dr-a"))
        device_a.create()
        assert device_a.push(ds, ["p1", "p3"]).success

        payload = _raw_payload(client)
        assert sorted(p["id"] for p in payload["patients"]) == ["p1", "p3"]
        assert sorted(n["patientId"] for n in payload["notes"]) == ["p1", "p3"]
        assert sorted(n["id"] for n in payload["notes"]) == ["n1", "n3"]
        assert payload["mode"] == "merge"

    def test_encrypted_round_trip(self, client, sync_client, dataset):
        sender = GroupSync(sync_client, "ward_7", "pw", passphrase="secret", encryption_enabled=True)
        sender.create()
        assert sender.push(dataset, ["p1", "p2"]).success

        payload = _raw_payload(client)
        assert is_envelope(payload)
        assert "Alice" not in str(payload)

        receiver = GroupSync(sync_client, "ward_7", "pw", passphrase="secret")
        merged, stats = receiver.pull(default_dataset()).value
        assert stats.newPatients == 2
        assert get_patient(merged, "p1")["name"] == "Alice"

    def test_encrypted_payload_needs_the_passphrase(self, sync_client, dataset):
        sender = GroupSync(sync_client, "ward_7", "pw", passphrase="secret", encryption_enabled=True)
        sender.create()
        sender.push(dataset, ["p1"])

        assert GroupSync(sync_client, "ward_7", "pw").pull(default_dataset()).error_type == LOCKED
        wrong = GroupSync(sync_client, "ward_7", "pw", passphrase="guess").pull(default_dataset())
        assert wrong.error_type == BAD_PASSWORD

    def test_conflict_then_pull_then_retry(self, device_a, device_b, dataset):
        device_a.create()
        assert device_b.pull(default_dataset()).success
        assert device_b.known_version == 1

        device_a.push(dataset, ["p1"])

        b_data = add_patient(default_dataset(), new_patient("Carol", id="p9"))
        stale = device_b.push(b_data, ["p9"])
        assert not stale.success
        assert stale.error_type == VERSION_CONFLICT
        assert stale.error_details["currentVersion"] == 2
        assert stale.error_details["status"] == 409

        merged, _ = device_b.pull(b_data).value
        assert {p["id"] for p in merged["patients"]} == {"p1", "p9"}
        retry = device_b.push(merged, ["p1", "p9"])
        assert retry.success
        assert retry.value == 3

    def test_pull_of_empty_group(self, device_a, dataset):
        device_a.create()
        merged, stats = device_a.pull(dataset).value
        assert not stats.changed
        assert merged == dataset

    def test_newer_remote_edit_wins(self, device_a, device_b, dataset):
        device_a.create()
        device_b.pull(dataset)
        edited = update_patient(dataset, "p1", name="Alice B.")
        device_a.push(edited, ["p1"])

        merged, stats = device_b.pull(dataset).value
        assert stats.updatedPatients == 1
        assert get_patient(merged, "p1")["name"] == "Alice B."

    def test_nothing_selected(self, device_a, dataset):
        device_a.create()
        res = device_a.push(dataset, [])
        assert res.error_type == NOTHING_SELECTED

    def test_credentials_checked_locally(self, sync_client, dataset):
        assert GroupSync(sync_client, "a", "pw").push(dataset, ["p1"]).error_type == BAD_ID
        assert GroupSync(sync_client, "ward_7", "").pull(dataset).error_type == MISSING_PASS
        assert GroupSync(sync_client, "abc\n", "pw").create().error_type == BAD_ID

    def test_has_remote_changes(self, device_a, device_b, dataset):
        device_a.create()
        device_b.pull(dataset)
        assert device_a.has_remote_changes().value is False

        device_b.push(dataset, ["p2"])
        assert device_a.has_remote_changes().value is True

    def test_from_dataset(self, sync_client, dataset):
        ds = dict(dataset, settings={"encryptionEnabled": True, "group": {"id": "ward_7", "pass": "pw"}})
        sync = GroupSync.from_dataset(sync_client, ds, "secret")
        assert (sync.group_id, sync.group_pass, sync.encryption_enabled) == ("ward_7", "pw", True)

    def test_network_failure(self, dataset):
        sync = GroupSync(SyncClient(session=BrokenSession()), "ward_7", "pw")
        res = sync.pull(dataset)
        assert res.error_type == NETWORK_ERROR
        assert res.error_details["status"] == 0
