"""
Error taxonomy shared by the device side and the group service.

Device-side code reports failures as ``Result`` values tagged with one of the
string constants below. The group service raises ``GroupError`` subclasses,
which the HTTP layer turns into ``{"error": ...}`` JSON bodies.
"""
from typing import Optional

# ----- failure tags (Result.error_type / ApiResult) -----
LOCKED = "Locked"
BAD_PASSWORD = "BadPassword"
CORRUPT_STORE = "CorruptStore"
MISSING_PASSWORD = "MissingPassword"
BAD_ID = "BadId"
MISSING_PASS = "MissingPass"
GROUP_EXISTS = "GroupExists"
FORBIDDEN = "Forbidden"
NOT_FOUND = "NotFound"
VERSION_CONFLICT = "VersionConflict"
BAD_PAYLOAD = "BadPayload"
INTERNAL_ERROR = "InternalError"
NETWORK_ERROR = "NetworkError"
NOTHING_SELECTED = "NothingSelected"


# ----- group service exceptions -----
class GroupError(Exception):
    status_code = 400
    message = "Bad request"
    error_type = BAD_PAYLOAD

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def body(self) -> dict:
        return {"error": self.message}


class BadId(GroupError):
    message = "Bad id"
    error_type = BAD_ID


class MissingPass(GroupError):
    message = "Missing pass"
    error_type = MISSING_PASS


class BadPayload(GroupError):
    message = "Bad payload"
    error_type = BAD_PAYLOAD


class Forbidden(GroupError):
    status_code = 403
    message = "Forbidden"
    error_type = FORBIDDEN


class NotFound(GroupError):
    status_code = 404
    message = "Not found"
    error_type = NOT_FOUND


class GroupExists(GroupError):
    status_code = 409
    message = "GroupExists"
    error_type = GROUP_EXISTS


class VersionConflict(GroupError):
    status_code = 409
    message = "VersionConflict"
    error_type = VERSION_CONFLICT

    def __init__(self, current_version: int):
        super().__init__()
        self.current_version = current_version

    def body(self) -> dict:
        return {"error": self.message, "currentVersion": self.current_version}


# status -> tag, for classifying remote responses on the client
STATUS_ERROR_TYPES = {
    400: BAD_PAYLOAD,
    403: FORBIDDEN,
    404: NOT_FOUND,
    500: INTERNAL_ERROR,
}

# server messages that pin down a more specific tag than the status alone
MESSAGE_ERROR_TYPES = {
    BadId.message: BAD_ID,
    MissingPass.message: MISSING_PASS,
    GroupExists.message: GROUP_EXISTS,
    VersionConflict.message: VERSION_CONFLICT,
}
