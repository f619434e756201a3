"""Tests for the server-side group store and its version protocol."""

import pytest

from crypto import sha256_hex
from errors import BadId, BadPayload, Forbidden, GroupExists, MissingPass, NotFound, VersionConflict
from group_service import create_group, fetch_group, group_meta, update_group
from models import GroupMeta


class TestCreate:
    def test_create_initialises_version_one(self, db_session):
        assert create_group(db_session, "ward_7", "pw") == {"id": "ward_7"}
        got = fetch_group(db_session, "ward_7", "pw")
        assert got["version"] == 1
        assert got["payload"] is None
        assert isinstance(got["updatedAt"], int)

    def test_only_the_hash_is_stored(self, db_session):
        create_group(db_session, "ward_7", "pw")
        meta = db_session.get(GroupMeta, "ward_7")
        assert meta.password_hash == sha256_hex("pw")
        assert meta.password_hash != "pw"

    def test_duplicate(self, db_session):
        create_group(db_session, "ward_7", "pw")
        with pytest.raises(GroupExists):
            create_group(db_session, "ward_7", "other")

    @pytest.mark.parametrize("gid", ["ab", "x" * 41, "bad id", "ü-group", "", None, "a/b", "abc\n", "ward_7\n"])
    def test_bad_ids(self, db_session, gid):
        with pytest.raises(BadId):
            create_group(db_session, gid, "pw")

    @pytest.mark.parametrize("gid", ["abc", "A-b_9", "x" * 40])
    def test_good_ids(self, db_session, gid):
        assert create_group(db_session, gid, "pw") == {"id": gid}

    def test_missing_pass(self, db_session):
        with pytest.raises(MissingPass):
            create_group(db_session, "ward_7", "")


class TestFetch:
    def test_wrong_password(self, db_session):
        create_group(db_session, "ward_7", "pw")
        with pytest.raises(Forbidden):
            fetch_group(db_session, "ward_7", "nope")

    def test_unknown_group(self, db_session):
        with pytest.raises(NotFound):
            fetch_group(db_session, "nobody", "pw")

    def test_fetch_is_repeatable(self, db_session):
        create_group(db_session, "ward_7", "pw")
        assert fetch_group(db_session, "ward_7", "pw") == fetch_group(db_session, "ward_7", "pw")


class TestUpdate:
    def test_version_protocol(self, db_session):
        create_group(db_session, "g01", "pw")
        assert update_group(db_session, "g01", "pw", payload={"x": 1}, base_version=1) == {"ok": True, "version": 2}

        with pytest.raises(VersionConflict) as exc:
            update_group(db_session, "g01", "pw", payload={"x": 2}, base_version=1)
        assert exc.value.current_version == 2
        assert exc.value.body() == {"error": "VersionConflict", "currentVersion": 2}

        # the rejected write left nothing behind
        assert fetch_group(db_session, "g01", "pw")["payload"] == {"x": 1}

    def test_each_write_bumps_by_exactly_one(self, db_session):
        create_group(db_session, "g01", "pw")
        versions = [update_group(db_session, "g01", "pw", payload=i, base_version=i + 1)["version"] for i in range(4)]
        assert versions == [2, 3, 4, 5]

    def test_missing_base_version_overwrites(self, db_session):
        # Permissive by default: a writer that omits baseVersion skips the check.
        create_group(db_session, "g01", "pw")
        update_group(db_session, "g01", "pw", payload="a", base_version=1)
        assert update_group(db_session, "g01", "pw", payload="b")["version"] == 3
        assert fetch_group(db_session, "g01", "pw")["payload"] == "b"

    def test_strict_mode_requires_base_version(self, db_session):
        create_group(db_session, "g01", "pw")
        with pytest.raises(VersionConflict) as exc:
            update_group(db_session, "g01", "pw", payload="a", require_base_version=True)
        assert exc.value.current_version == 1

    def test_null_payload_is_allowed(self, db_session):
        create_group(db_session, "g01", "pw")
        assert update_group(db_session, "g01", "pw", payload=None, base_version=1)["version"] == 2

    def test_missing_payload(self, db_session):
        create_group(db_session, "g01", "pw")
        with pytest.raises(BadPayload):
            update_group(db_session, "g01", "pw")

    def test_password_checked_before_payload(self, db_session):
        create_group(db_session, "g01", "pw")
        with pytest.raises(Forbidden):
            update_group(db_session, "g01", "wrong", payload={"x": 1})

    def test_unknown_group(self, db_session):
        with pytest.raises(NotFound):
            update_group(db_session, "nobody", "pw", payload={})


class TestMeta:
    def test_meta_tracks_version(self, db_session):
        create_group(db_session, "g01", "pw")
        update_group(db_session, "g01", "pw", payload={}, base_version=1)
        meta = group_meta(db_session, "g01")
        assert meta["version"] == 2
        assert "payload" not in meta

    def test_meta_unknown(self, db_session):
        with pytest.raises(NotFound):
            group_meta(db_session, "nobody")

    def test_meta_bad_id(self, db_session):
        with pytest.raises(BadId):
            group_meta(db_session, "!")
