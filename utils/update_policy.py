"""Merging partial updates into posts and comments.

Two rules decide what gets written:

- Edit tracking: touching any content field marks the document as edited,
  unless the caller passes an explicit ``edited`` value. ``edited`` never
  goes back to false.
- Votes: ``upVotes``/``downVotes`` are either signed deltas added to the
  stored count or absolute replacement values. Counts stay between zero
  and MAX_VOTES.

Deltas need the stored count, so ``apply_update`` reads the document and then
writes with a filter on the counts it read. A concurrent writer makes the
filter miss and the merge is redone on fresh data.
"""
from datetime import datetime, timezone
from typing import Iterable

from pymongo import ReturnDocument

from schemas import MAX_VOTES
from utils.errors import BadRequest, InternalError, NotFound

POST_CONTENT_FIELDS = frozenset({"title", "bodyText", "attachments"})
COMMENT_CONTENT_FIELDS = frozenset({"bodyText", "attachments"})
VOTE_FIELDS = ("upVotes", "downVotes")

MAX_WRITE_ATTEMPTS = 5


def merge_update(current: dict, changes: dict, content_fields: Iterable[str], votes_are_deltas: bool = True) -> dict:
    """Return the fields to $set on current for the requested changes.

    current is the stored document, changes the validated camelCase payload.
    """
    content_fields = frozenset(content_fields)
    updates = {}

    for field, value in changes.items():
        if field in VOTE_FIELDS or field == "edited":
            continue
        updates[field] = value

    for field in VOTE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if votes_are_deltas:
            updates[field] = min(MAX_VOTES, max(0, current.get(field, 0) + value))
        else:
            if value < 0:
                raise BadRequest(f"{field} cannot be negative")
            if value > MAX_VOTES:
                raise BadRequest(f"{field} cannot exceed {MAX_VOTES}")
            updates[field] = value

    touched_content = any(field in changes for field in content_fields)
    explicit = changes.get("edited")
    if explicit is None:
        edited = current.get("edited", False) or touched_content
    else:
        edited = current.get("edited", False) or bool(explicit)
    if edited != current.get("edited", False):
        updates["edited"] = edited

    return updates


async def apply_update(collection, doc_id, changes: dict, content_fields: Iterable[str], votes_are_deltas: bool = True, what: str = "Document") -> dict:
    """Merge changes into the document with doc_id and return the stored result.

    Raises NotFound when the document does not exist (nothing is created).
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        current = await collection.find_one({"_id": doc_id})
        if current is None:
            raise NotFound(f"{what} not found")

        updates = merge_update(current, changes, content_fields, votes_are_deltas)
        updates["updatedAt"] = datetime.now(timezone.utc)

        # Only guard on the counts that this merge depends on
        guard = {"_id": doc_id}
        if votes_are_deltas:
            for field in VOTE_FIELDS:
                if field in changes:
                    guard[field] = current.get(field, 0)

        updated = await collection.find_one_and_update(
            guard,
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated

    raise InternalError("Update kept conflicting with concurrent writes")
