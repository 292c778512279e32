import secrets
from typing import Optional

import bcrypt
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from utils.errors import Forbidden, InternalError, Unauthenticated
from utils.validation import BCRYPT_MAX_BYTES

TOKEN_BYTES = 16
TOKEN_ATTEMPTS = 5

# Checked against when a login names an unknown user, so both paths pay for bcrypt
_DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt()).decode("utf-8")


##########
# Passwords
##########
def hash_password(password: str):
    """Hash password using bcrypt, return (hash, salt)"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8'), salt.decode('utf-8')


def verify_password(password: str, hashed: Optional[str]):
    """Verify password against hashed value.

    Passwords longer than bcrypt accepts never match; they still pay for a check.
    """
    encoded = password.encode('utf-8')
    if not hashed or len(encoded) > BCRYPT_MAX_BYTES:
        bcrypt.checkpw(encoded[:BCRYPT_MAX_BYTES], _DUMMY_HASH.encode('utf-8'))
        return False
    return bcrypt.checkpw(encoded, hashed.encode('utf-8'))


##########
# Tokens
##########
def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


async def issue_token(db, user_id: ObjectId) -> str:
    """Mint a token no other user holds and store it on the user"""
    for _ in range(TOKEN_ATTEMPTS):
        token = generate_token()
        if await db.users.find_one({"authToken": token}, {"_id": 1}):
            continue
        try:
            await db.users.update_one({"_id": user_id}, {"$set": {"authToken": token}})
        except DuplicateKeyError:
            continue
        return token
    raise InternalError("Could not issue a unique token")


async def revoke_token(db, user_id: ObjectId):
    await db.users.update_one({"_id": user_id}, {"$unset": {"authToken": ""}})


##########
# Current User
##########
async def resolve_user(db, token: Optional[str]):
    """Return the user holding token, or None for anonymous callers"""
    if not token:
        return None
    return await db.users.find_one({"authToken": token})


async def require_user(db, token: Optional[str]):
    """Return the user holding token or raise 401"""
    user = await resolve_user(db, token)
    if not user:
        raise Unauthenticated("Authentication required" if not token else "Invalid token")
    return user


def require_owner(user: dict, owner_id: ObjectId):
    """Raise 403 unless user is the resource owner"""
    if user["_id"] != owner_id:
        raise Forbidden("You do not own this resource")
