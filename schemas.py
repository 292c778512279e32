"""
Schemas for the forum API

Stored documents: each model maps to a MongoDB collection
- UserDocument -> "users"
- CommunityDocument -> "communities"
- PostDocument -> "posts"
- CommentDocument -> "comments"

Field names are snake_case in Python and camelCase in MongoDB and on the wire.

Request bodies: the *Create / *Update / Login models below. Update models
reject payloads with no recognized field.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictInt,
    StringConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel

from utils.validation import password_fits_bcrypt

MAX_ATTACHMENTS = 3
MAX_IMAGES = 5
# Vote counts and deltas stay within a signed 32-bit int
MAX_VOTES = 2**31 - 1

Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_.-]+$")]
DisplayName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=64)]
Password = Annotated[str, StringConstraints(min_length=6), AfterValidator(password_fits_bcrypt)]
Reference = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2048)]
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=300)]
CommunityName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Description = Annotated[str, StringConstraints(max_length=2000)]
BodyText = Annotated[str, StringConstraints(max_length=40000)]
CommentText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=10000)]
Attachments = Annotated[List[Reference], Field(max_length=MAX_ATTACHMENTS)]
Images = Annotated[List[Reference], Field(max_length=MAX_IMAGES)]
VoteDelta = Annotated[StrictInt, Field(ge=-MAX_VOTES, le=MAX_VOTES)]


def utcnow():
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    def to_mongo(self) -> dict:
        return self.model_dump(by_alias=True)


#####################
# Stored Documents
#####################
class UserDocument(CamelModel):
    username: str
    display_name: str
    email: str
    hashed_password: str
    salt: str
    auth_token: Optional[str] = None
    subscriptions: List[ObjectId] = Field(default_factory=list, description="Subscribed community ids")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_mongo(self) -> dict:
        # A logged-out user has no authToken field at all (sparse unique index)
        return self.model_dump(by_alias=True, exclude_none=True)


class CommunityDocument(CamelModel):
    owner: ObjectId
    name: str
    description: str = ""
    images: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PostDocument(CamelModel):
    owner: ObjectId
    community: ObjectId
    title: str
    body_text: str = ""
    edited: bool = False
    up_votes: int = Field(0, ge=0)
    down_votes: int = Field(0, ge=0)
    attachments: List[str] = Field(default_factory=list)
    comments: List[ObjectId] = Field(default_factory=list, description="Comment ids, append only")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CommentDocument(CamelModel):
    post: ObjectId
    author: ObjectId
    author_display_name: str = Field(..., description="Author display name when the comment was made")
    body_text: str
    edited: bool = False
    up_votes: int = Field(0, ge=0)
    down_votes: int = Field(0, ge=0)
    attachments: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


#################
# Request Bodies
#################
class PartialUpdate(CamelModel):
    """Base for PATCH bodies: at least one recognized, non-null field"""

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.changes():
            raise ValueError("at least one updatable field must be provided")
        return self

    def changes(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


class UserCreate(CamelModel):
    username: Username
    display_name: Optional[DisplayName] = None
    email: EmailStr
    plaintext_password: Password


class UserUpdate(PartialUpdate):
    username: Optional[Username] = None
    display_name: Optional[DisplayName] = None
    email: Optional[EmailStr] = None
    plaintext_password: Optional[Password] = None


class UserLogin(CamelModel):
    username: Optional[Annotated[str, StringConstraints(min_length=1)]] = None
    email: Optional[EmailStr] = None
    plaintext_password: Annotated[str, StringConstraints(min_length=1)]

    @model_validator(mode="after")
    def username_xor_email(self):
        if (self.username is None) == (self.email is None):
            raise ValueError("exactly one of username or email must be provided")
        return self

    def selector(self) -> dict:
        if self.username is not None:
            return {"username": self.username}
        return {"email": self.email}


class CommunityCreate(CamelModel):
    name: CommunityName
    description: Description = ""
    images: Images = Field(default_factory=list)


class CommunityUpdate(PartialUpdate):
    name: Optional[CommunityName] = None
    description: Optional[Description] = None
    images: Optional[Images] = None


class PostCreate(CamelModel):
    title: Title
    body_text: BodyText = ""
    attachments: Attachments = Field(default_factory=list)


class PostUpdate(PartialUpdate):
    title: Optional[Title] = None
    body_text: Optional[BodyText] = None
    attachments: Optional[Attachments] = None
    up_votes: Optional[VoteDelta] = Field(None, description="Signed change to apply")
    down_votes: Optional[VoteDelta] = Field(None, description="Signed change to apply")
    edited: Optional[bool] = None


class CommentCreate(CamelModel):
    body_text: CommentText
    attachments: Attachments = Field(default_factory=list)


class CommentUpdate(PartialUpdate):
    body_text: Optional[CommentText] = None
    attachments: Optional[Attachments] = None
    up_votes: Optional[VoteDelta] = None
    down_votes: Optional[VoteDelta] = None
    edited: Optional[bool] = None


class ResampleRequest(CamelModel):
    users: int = Field(5, ge=1, le=100)
    communities: int = Field(3, ge=1, le=100)
    posts: int = Field(3, ge=1, le=20, description="Posts per community")
    comments: int = Field(2, ge=0, le=10, description="Comments per post")
