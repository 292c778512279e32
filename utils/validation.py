import re

from bson import ObjectId

from utils.errors import BadRequest

OBJECT_ID_PATTERN = re.compile(r"^[a-fA-F0-9]{24}$")
BCRYPT_MAX_BYTES = 72


def is_valid_object_id(value) -> bool:
    """True if value is a 24 character hex document id"""
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


def parse_object_id(value: str, what: str = "id") -> ObjectId:
    """Convert a path identifier to an ObjectId or raise BadRequest"""
    if not is_valid_object_id(value):
        raise BadRequest(f"Invalid {what}")
    return ObjectId(value)


def password_fits_bcrypt(password: str) -> str:
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"password must be at most {BCRYPT_MAX_BYTES} bytes")
    return password
