from datetime import datetime

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from utils.errors import Conflict

COLLECTIONS = ("users", "communities", "posts", "comments")
PRIVATE_USER_FIELDS = ("hashedPassword", "salt", "authToken")


######################
# Database Connection
######################
def connect(mongo_uri: str, database_name: str):
    """Create a client and return (client, database)"""
    client = AsyncIOMotorClient(mongo_uri)
    return client, client[database_name]


async def ensure_indexes(db):
    """Create the unique and lookup indexes the API relies on"""
    # Unique constraints
    await db.users.create_index("username", unique=True)
    await db.users.create_index("email", unique=True)
    await db.users.create_index("authToken", unique=True, sparse=True)
    await db.communities.create_index("name", unique=True)

    # Listing and lookups
    await db.posts.create_index([("community", ASCENDING)])
    await db.posts.create_index([("createdAt", DESCENDING)])
    await db.comments.create_index([("post", ASCENDING)])


async def reset_collections(db):
    for name in COLLECTIONS:
        await db[name].delete_many({})


##########
# Writes
##########
async def insert_document(collection, doc: dict, what: str = "document"):
    """Insert doc, translating unique index violations into Conflict"""
    try:
        result = await collection.insert_one(doc)
    except DuplicateKeyError as exc:
        raise Conflict(f"{what} already exists") from exc
    doc["_id"] = result.inserted_id
    return doc


#################
# Serialization
#################
def _plain(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def serialize(doc: dict) -> dict:
    """Turn a stored document into JSON-ready data (_id -> id)"""
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return _plain(d)


def public_user(doc: dict, include_token: bool = False) -> dict:
    data = serialize({k: v for k, v in doc.items() if k not in PRIVATE_USER_FIELDS})
    if include_token:
        data["authToken"] = doc.get("authToken")
    return data
