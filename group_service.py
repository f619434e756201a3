"""
Server-side group store: create, read and version-checked write of one shared
payload per group.

Every group is gated by a single shared password, stored only as its SHA-256
hex digest and compared in constant time. Writes go through one conditional
UPDATE so that "check the version, then write" cannot interleave with another
writer.
"""
import logging
import re
import time
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import GROUP_ID_PATTERN, REQUIRE_BASE_VERSION
from crypto import safe_equal, sha256_hex
from errors import BadId, BadPayload, Forbidden, GroupExists, MissingPass, NotFound, VersionConflict
from models import GroupData, GroupMeta

logger = logging.getLogger(__name__)

GROUP_ID_RE = re.compile(GROUP_ID_PATTERN)
MISSING = object()


def now_ms() -> int:
    return int(time.time() * 1000)

def validate_group_id(group_id: Optional[str]) -> str:
    if not isinstance(group_id, str) or not GROUP_ID_RE.fullmatch(group_id):
        raise BadId()
    return group_id

def _require_pass(password: Optional[str]) -> str:
    if not password:
        raise MissingPass()
    return password

def authorize(db: Session, group_id: str, password: Optional[str]) -> GroupMeta:
    """Id shape, then password presence, then existence, then the password itself."""
    validate_group_id(group_id)
    _require_pass(password)
    meta = db.get(GroupMeta, group_id)
    if meta is None:
        raise NotFound()
    if not safe_equal(sha256_hex(password), meta.password_hash):
        raise Forbidden()
    return meta


def create_group(db: Session, group_id: str, password: str) -> dict:
    validate_group_id(group_id)
    _require_pass(password)
    if db.get(GroupMeta, group_id) is not None:
        raise GroupExists()

    ts = now_ms()
    db.add(GroupMeta(id=group_id, password_hash=sha256_hex(password), created_at=ts))
    db.add(GroupData(id=group_id, version=1, updated_at=ts, payload=None))
    try:
        db.commit()
    except IntegrityError:
        # lost a race with another create for the same id
        db.rollback()
        raise GroupExists()
    logger.info("group %s created", group_id)
    return {"id": group_id}


def fetch_group(db: Session, group_id: str, password: str) -> dict:
    authorize(db, group_id, password)
    data = db.get(GroupData, group_id)
    if data is None:
        raise NotFound()
    return {"version": data.version, "updatedAt": data.updated_at, "payload": data.payload}


def group_meta(db: Session, group_id: str) -> dict:
    """Version and timestamp only, for cheap polling; no password needed."""
    validate_group_id(group_id)
    data = db.get(GroupData, group_id)
    if data is None:
        raise NotFound()
    return {"version": int(data.version or 1), "updatedAt": data.updated_at}


def update_group(
    db: Session,
    group_id: str,
    password: str,
    payload=MISSING,
    base_version: Optional[int] = None,
    require_base_version: bool = REQUIRE_BASE_VERSION,
) -> dict:
    """
    Store ``payload`` as the next version of the group.

    With ``base_version`` the write only lands if the stored version still
    equals it; otherwise ``VersionConflict`` carries the current version.
    Without it the write is unconditional unless ``require_base_version``.
    """
    authorize(db, group_id, password)
    if payload is MISSING:
        raise BadPayload()

    if base_version is None and require_base_version:
        raise VersionConflict(_current_version(db, group_id))

    stmt = (
        update(GroupData)
        .where(GroupData.id == group_id)
        .values(version=GroupData.version + 1, updated_at=now_ms(), payload=payload)
        .returning(GroupData.version)
        .execution_options(synchronize_session=False)
    )
    if base_version is not None:
        stmt = stmt.where(GroupData.version == base_version)

    new_version = db.execute(stmt).scalar_one_or_none()
    if new_version is None:
        db.rollback()
        current = _current_version(db, group_id)
        logger.info("stale push to group %s (base=%s, current=%s)", group_id, base_version, current)
        raise VersionConflict(current)

    db.commit()
    logger.info("group %s advanced to version %s", group_id, new_version)
    return {"ok": True, "version": new_version}


def _current_version(db: Session, group_id: str) -> int:
    version = db.query(GroupData.version).filter(GroupData.id == group_id).scalar()
    if version is None:
        raise NotFound()
    return version
