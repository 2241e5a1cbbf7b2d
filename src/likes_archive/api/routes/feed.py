"""Archived likes read-out."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from likes_archive.api.deps import SessionDep
from likes_archive.db.models import LikeModel, MediaModel, PostModel, UserModel
from likes_archive.services.rendering import render_post

router = APIRouter(prefix="/users", tags=["Feed"])


class MediaResponse(BaseModel):
    """A stored media file."""

    media_key: str
    type: str
    mime: str
    path: str


class LikedPostResponse(BaseModel):
    """A liked post as archived."""

    index: int
    post_id: str
    author_username: str
    author_name: str
    created_at: datetime
    html: str
    media: list[MediaResponse]


class LikesResponse(BaseModel):
    """A page of a user's likes, most recent like first."""

    user_id: str
    total: int
    likes: list[LikedPostResponse]


@router.get(
    "/{user_id}/likes",
    response_model=LikesResponse,
    summary="List archived likes",
)
async def list_likes(
    user_id: str,
    db: SessionDep,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> LikesResponse:
    """List a user's archived likes, newest like first."""
    if db.get(UserModel, user_id) is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"User {user_id} not found")

    total = db.scalar(
        select(func.count()).select_from(LikeModel).where(LikeModel.user_id == user_id)
    ) or 0
    likes = db.execute(
        select(LikeModel)
        .where(LikeModel.user_id == user_id)
        .order_by(LikeModel.index.desc())
        .offset(offset)
        .limit(limit)
        .options(
            selectinload(LikeModel.post).selectinload(PostModel.author),
            selectinload(LikeModel.post).selectinload(PostModel.hashtags),
            selectinload(LikeModel.post).selectinload(PostModel.mentions),
            selectinload(LikeModel.post).selectinload(PostModel.urls),
            selectinload(LikeModel.post)
            .selectinload(PostModel.media)
            .selectinload(MediaModel.file),
        )
    ).scalars().all()

    return LikesResponse(
        user_id=user_id,
        total=total,
        likes=[
            LikedPostResponse(
                index=like.index,
                post_id=like.post.id,
                author_username=like.post.author.username,
                author_name=like.post.author.name,
                created_at=like.post.created_at,
                html=render_post(like.post),
                media=[
                    MediaResponse(
                        media_key=media.media_key,
                        type=media.type,
                        mime=media.file.mime.name,
                        path=media.file.filename,
                    )
                    for media in like.post.media
                ],
            )
            for like in likes
        ],
    )
