"""Blog example: posts with nested comments.

Run with ``uvicorn restgen.demo:build_app --factory``.
"""

from pydantic import BaseModel

from restgen.config import Settings
from restgen.main import create_app
from restgen.schema import RoleRequirements, describe, relation

USER_ONLY = RoleRequirements(read="user", update="user", delete="user")


class Post(BaseModel):
    id: int | None = None
    title: str
    content: str
    created_at: str | None = None
    updated_at: str | None = None


class Comment(BaseModel):
    id: int | None = None
    title: str
    content: str
    post_id: int = relation("post.id")
    created_at: str | None = None
    updated_at: str | None = None


MODELS = [
    describe(Post, roles=USER_ONLY),
    describe(Comment, roles=USER_ONLY),
]


def build_app(config: Settings | None = None):
    return create_app(config, models=MODELS)
