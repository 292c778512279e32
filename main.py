##########
# Imports
##########
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
from datetime import datetime, timezone
import logging
import random
import uuid
# MongoDB
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from schemas import (
    CommentCreate,
    CommentDocument,
    CommentUpdate,
    CommunityCreate,
    CommunityDocument,
    CommunityUpdate,
    PostCreate,
    PostDocument,
    PostUpdate,
    ResampleRequest,
    UserCreate,
    UserDocument,
    UserLogin,
    UserUpdate,
)
from utils.config import Settings, get_settings
from utils.database import connect, ensure_indexes, insert_document, public_user, reset_collections, serialize
from utils.errors import Conflict, Forbidden, NotFound, register_exception_handlers
from utils.log import configure_logging, set_request_id
from utils.security import hash_password, issue_token, require_owner, require_user, revoke_token, verify_password
from utils.seed import generate_sample_data
from utils.update_policy import COMMENT_CONTENT_FIELDS, POST_CONTENT_FIELDS, apply_update
from utils.validation import parse_object_id

logger = logging.getLogger("forum")

router = APIRouter()


###############
# Dependencies
###############
def get_db(request: Request):
    """Database handle injected into this application"""
    return request.app.state.db


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_token(request: Request) -> Optional[str]:
    """Bearer token from the configured header (X-Authorization by default)"""
    settings = request.app.state.settings
    return request.headers.get(settings.auth_header) or None


def now():
    return datetime.now(timezone.utc)


def generate_display_name():
    """Random public display name, e.g. User0042"""
    return f"User{random.randint(0, 9999):04d}"


async def list_page(collection, query: dict, page: int, limit: int, sort=DESCENDING):
    cursor = collection.find(query).sort("createdAt", sort).skip((page - 1) * limit).limit(limit)
    return await cursor.to_list(None)


async def find_or_404(collection, doc_id, what: str):
    doc = await collection.find_one({"_id": doc_id})
    if not doc:
        raise NotFound(f"{what} not found")
    return doc


##########
# Health
##########
@router.get("/health")
async def health():
    return {"msg": "The server is up and running!"}


##########
# Users
##########
@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, db=Depends(get_db)):
    """Register a user; the new user is logged in straight away"""
    # Check if username/email already exists
    existing_user = await db.users.find_one({"$or": [{"username": payload.username}, {"email": payload.email}]})
    if existing_user:
        raise Conflict("Username already exists" if existing_user["username"] == payload.username else "Email already exists")

    hashed_password, salt = hash_password(payload.plaintext_password)
    user = UserDocument(
        username=payload.username,
        display_name=payload.display_name or generate_display_name(),
        email=payload.email,
        hashed_password=hashed_password,
        salt=salt,
    ).to_mongo()
    await insert_document(db.users, user, "user")

    user["authToken"] = await issue_token(db, user["_id"])
    logger.info("user %s registered", user["_id"])
    return public_user(user, include_token=True)


@router.post("/users/login")
async def login(payload: UserLogin, db=Depends(get_db)):
    """Exchange username or email plus password for a fresh token"""
    user = await db.users.find_one(payload.selector())

    # Same answer for unknown user and wrong password
    if not verify_password(payload.plaintext_password, user["hashedPassword"] if user else None):
        raise NotFound("Invalid login credentials")

    user["authToken"] = await issue_token(db, user["_id"])
    logger.info("user %s logged in", user["_id"])
    return public_user(user, include_token=True)


@router.post("/users/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    user = await require_user(db, token)
    await revoke_token(db, user["_id"])
    logger.info("user %s logged out", user["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/{user_id}")
async def get_user(user_id: str, db=Depends(get_db)):
    oid = parse_object_id(user_id, "user id")
    user = await find_or_404(db.users, oid, "User")
    return public_user(user)


@router.patch("/users/{user_id}")
async def update_user(user_id: str, payload: UserUpdate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    """Update the caller's own account; a new password logs them out"""
    oid = parse_object_id(user_id, "user id")
    changes = payload.changes()

    caller = await require_user(db, token)
    target = await find_or_404(db.users, oid, "User")
    require_owner(caller, target["_id"])

    update = {"$set": changes}
    if "plaintextPassword" in changes:
        hashed_password, salt = hash_password(changes.pop("plaintextPassword"))
        changes["hashedPassword"] = hashed_password
        changes["salt"] = salt
        update["$unset"] = {"authToken": ""}
    changes["updatedAt"] = now()

    try:
        updated = await db.users.find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError as exc:
        raise Conflict("Username or email already exists") from exc
    if not updated:
        raise NotFound("User not found")
    return public_user(updated)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: str, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(user_id, "user id")

    caller = await require_user(db, token)
    target = await find_or_404(db.users, oid, "User")
    require_owner(caller, target["_id"])

    result = await db.users.delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFound("User not found")
    logger.info("user %s deleted", oid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


##############
# Communities
##############
@router.get("/communities")
async def list_communities(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db=Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    communities = await list_page(db.communities, {}, page, limit or settings.page_size)
    return [serialize(c) for c in communities]


@router.post("/communities", status_code=status.HTTP_201_CREATED)
async def create_community(payload: CommunityCreate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    caller = await require_user(db, token)
    community = CommunityDocument(
        owner=caller["_id"],
        name=payload.name,
        description=payload.description,
        images=payload.images,
    ).to_mongo()
    await insert_document(db.communities, community, "community")
    logger.info("community %s created by %s", community["_id"], caller["_id"])
    return serialize(community)


@router.get("/communities/{community_id}")
async def get_community(community_id: str, db=Depends(get_db)):
    oid = parse_object_id(community_id, "community id")
    return serialize(await find_or_404(db.communities, oid, "Community"))


@router.patch("/communities/{community_id}")
async def update_community(community_id: str, payload: CommunityUpdate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(community_id, "community id")
    changes = payload.changes()

    caller = await require_user(db, token)
    community = await find_or_404(db.communities, oid, "Community")
    require_owner(caller, community["owner"])

    changes["updatedAt"] = now()
    try:
        updated = await db.communities.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError as exc:
        raise Conflict("Community already exists") from exc
    if not updated:
        raise NotFound("Community not found")
    return serialize(updated)


@router.post("/communities/{community_id}/subscription")
async def subscribe(community_id: str, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(community_id, "community id")
    caller = await require_user(db, token)
    await find_or_404(db.communities, oid, "Community")

    user = await db.users.find_one_and_update(
        {"_id": caller["_id"]},
        {"$addToSet": {"subscriptions": oid}, "$set": {"updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return public_user(user)


@router.delete("/communities/{community_id}/subscription")
async def unsubscribe(community_id: str, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(community_id, "community id")
    caller = await require_user(db, token)
    await find_or_404(db.communities, oid, "Community")

    user = await db.users.find_one_and_update(
        {"_id": caller["_id"]},
        {"$pull": {"subscriptions": oid}, "$set": {"updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return public_user(user)


@router.post("/communities/{community_id}/posts", status_code=status.HTTP_201_CREATED)
async def create_post(community_id: str, payload: PostCreate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    """Any logged-in user may post in an existing community"""
    oid = parse_object_id(community_id, "community id")
    caller = await require_user(db, token)
    await find_or_404(db.communities, oid, "Community")

    post = PostDocument(
        owner=caller["_id"],
        community=oid,
        title=payload.title,
        body_text=payload.body_text,
        attachments=payload.attachments,
    ).to_mongo()
    await insert_document(db.posts, post, "post")
    logger.info("post %s created in %s", post["_id"], oid)
    return serialize(post)


@router.get("/communities/{community_id}/posts")
async def list_community_posts(
    community_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db=Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    oid = parse_object_id(community_id, "community id")
    await find_or_404(db.communities, oid, "Community")
    posts = await list_page(db.posts, {"community": oid}, page, limit or settings.page_size)
    return [serialize(p) for p in posts]


##################
# Posts
##################
@router.get("/posts")
async def list_posts(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db=Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    posts = await list_page(db.posts, {}, page, limit or settings.page_size)
    return [serialize(p) for p in posts]


@router.get("/posts/{post_id}")
async def get_post(post_id: str, db=Depends(get_db)):
    oid = parse_object_id(post_id, "post id")
    return serialize(await find_or_404(db.posts, oid, "Post"))


@router.patch("/posts/{post_id}")
async def update_post(post_id: str, payload: PostUpdate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    """Edit content and/or apply vote deltas to a post"""
    oid = parse_object_id(post_id, "post id")
    changes = payload.changes()

    caller = await require_user(db, token)
    post = await find_or_404(db.posts, oid, "Post")
    require_owner(caller, post["owner"])

    updated = await apply_update(db.posts, oid, changes, POST_CONTENT_FIELDS, votes_are_deltas=True, what="Post")
    return serialize(updated)


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: str, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    """Delete a post and its comments"""
    oid = parse_object_id(post_id, "post id")

    caller = await require_user(db, token)
    post = await find_or_404(db.posts, oid, "Post")
    require_owner(caller, post["owner"])

    result = await db.posts.delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFound("Post not found")

    # Delete comments related to post
    await db.comments.delete_many({"post": oid})
    logger.info("post %s deleted", oid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


#####################
# Comments
#####################
@router.get("/posts/{post_id}/comments")
async def list_comments(post_id: str, db=Depends(get_db)):
    oid = parse_object_id(post_id, "post id")
    await find_or_404(db.posts, oid, "Post")
    comments = await db.comments.find({"post": oid}).sort("createdAt", ASCENDING).to_list(None)
    return [serialize(c) for c in comments]


@router.post("/posts/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(post_id: str, payload: CommentCreate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(post_id, "post id")
    caller = await require_user(db, token)
    await find_or_404(db.posts, oid, "Post")

    comment = CommentDocument(
        post=oid,
        author=caller["_id"],
        author_display_name=caller["displayName"],
        body_text=payload.body_text,
        attachments=payload.attachments,
    ).to_mongo()
    await insert_document(db.comments, comment, "comment")

    # Comment ids are only ever appended to the post
    result = await db.posts.update_one({"_id": oid}, {"$push": {"comments": comment["_id"]}})
    if result.matched_count == 0:
        await db.comments.delete_one({"_id": comment["_id"]})
        raise NotFound("Post not found")
    return serialize(comment)


@router.patch("/posts/comments/{comment_id}")
async def update_comment(comment_id: str, payload: CommentUpdate, db=Depends(get_db), token: Optional[str] = Depends(get_auth_token)):
    oid = parse_object_id(comment_id, "comment id")
    changes = payload.changes()

    caller = await require_user(db, token)
    comment = await find_or_404(db.comments, oid, "Comment")
    require_owner(caller, comment["author"])

    updated = await apply_update(db.comments, oid, changes, COMMENT_CONTENT_FIELDS, votes_are_deltas=True, what="Comment")
    return serialize(updated)


#####################
# Database Maintenance
#####################
def require_maintenance(settings: Settings = Depends(get_app_settings)):
    if settings.is_production:
        raise Forbidden("Database maintenance is disabled in production")
    if not settings.enable_maintenance:
        raise Forbidden("Database maintenance is disabled")


@router.post("/db/reset", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_maintenance)])
async def reset_database(db=Depends(get_db)):
    """Remove every document from the forum collections"""
    await reset_collections(db)
    logger.warning("database reset")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/db/resample", dependencies=[Depends(require_maintenance)])
async def resample_database(payload: Optional[ResampleRequest] = None, db=Depends(get_db)):
    """Add random sample documents to the collections"""
    counts = await generate_sample_data(db, payload or ResampleRequest())
    logger.info("database resampled: %s", counts)
    return counts


#####################
# FastAPI App Setup
#####################
def create_app(db=None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around an injected database handle.

    Without db, a client is created from settings at startup and closed at
    shutdown.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Forum API", description="Users, communities, posts and comments")
    app.state.settings = settings
    app.state.db = db
    app.state.client = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=[settings.auth_header, "Content-Type", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(rid)
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    register_exception_handlers(app, debug=not settings.is_production)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        """Connect if no database was injected, then create indexes"""
        if app.state.db is None:
            app.state.client, app.state.db = connect(settings.mongo_uri, settings.database_name)
            logger.info("connected to %s", settings.database_name)
        await ensure_indexes(app.state.db)

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.client is not None:
            app.state.client.close()

    return app


app = create_app()


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
