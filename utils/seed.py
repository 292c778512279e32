import random
import secrets

from schemas import CommentDocument, CommunityDocument, PostDocument, ResampleRequest, UserDocument
from utils.security import hash_password

SAMPLE_PASSWORD = "password123"

WORDS = [
    "python", "async", "forum", "garden", "coffee", "bikes", "retro", "games",
    "music", "space", "cooking", "travel", "linux", "design", "photos", "books",
]


def _sentence(n_words: int) -> str:
    words = random.choices(WORDS, k=n_words)
    return " ".join(words).capitalize()


async def generate_sample_data(db, request: ResampleRequest) -> dict:
    """Insert random users, communities, posts and comments; return counts.

    Every sample user shares SAMPLE_PASSWORD so they can log in.
    """
    # Hashing is slow, every sample user shares one hash
    hashed, salt = hash_password(SAMPLE_PASSWORD)
    suffix = secrets.token_hex(3)

    users = []
    for i in range(request.users):
        user = UserDocument(
            username=f"sample_{suffix}_{i}",
            display_name=f"User{random.randint(0, 9999):04d}",
            email=f"sample_{suffix}_{i}@example.com",
            hashed_password=hashed,
            salt=salt,
        ).to_mongo()
        user["_id"] = (await db.users.insert_one(user)).inserted_id
        users.append(user)

    counts = {"users": len(users), "communities": 0, "posts": 0, "comments": 0}

    for i in range(request.communities):
        owner = random.choice(users)
        community = CommunityDocument(
            owner=owner["_id"],
            name=f"{random.choice(WORDS)}-{suffix}-{i}",
            description=_sentence(8),
        ).to_mongo()
        community_id = (await db.communities.insert_one(community)).inserted_id
        counts["communities"] += 1

        for _ in range(request.posts):
            post = PostDocument(
                owner=random.choice(users)["_id"],
                community=community_id,
                title=_sentence(4),
                body_text=_sentence(20),
                up_votes=random.randint(0, 50),
                down_votes=random.randint(0, 10),
            ).to_mongo()
            post_id = (await db.posts.insert_one(post)).inserted_id
            counts["posts"] += 1

            comment_ids = []
            for _ in range(request.comments):
                author = random.choice(users)
                comment = CommentDocument(
                    post=post_id,
                    author=author["_id"],
                    author_display_name=author["displayName"],
                    body_text=_sentence(10),
                ).to_mongo()
                comment_ids.append((await db.comments.insert_one(comment)).inserted_id)
            if comment_ids:
                await db.posts.update_one({"_id": post_id}, {"$push": {"comments": {"$each": comment_ids}}})
            counts["comments"] += len(comment_ids)

    return counts
