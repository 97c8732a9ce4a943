import logging

from bs4 import BeautifulSoup
from fastapi import APIRouter, status
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from app.models.comment import Comment
from app.schemas.comment import CommentCreate, CommentResponse
from app.schemas.auth import MessageResponse
from app.core.exceptions import (
    BadRequestException,
    ForbiddenException,
    NotFoundException,
)
from app.dependencies import AppSettings, CurrentUser, DbSession

router = APIRouter()
logger = logging.getLogger(__name__)


def strip_markup(text: str) -> str:
    """Drop every HTML tag, keeping only the text, and trim it."""
    return BeautifulSoup(text, "html.parser").get_text().strip()


def _to_response(comment: Comment, username: str) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        title=comment.title,
        body=comment.body,
        created_at=comment.created_at,
        user_id=comment.user_id,
        username=username,
    )


@router.get(
    "",
    response_model=list[CommentResponse],
    summary="List comments",
)
async def list_comments(db: DbSession):
    """All comments, newest first, with the author's username."""
    result = await db.execute(
        select(Comment)
        .options(selectinload(Comment.user))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    return [_to_response(comment, comment.user.username) for comment in result.scalars().all()]


@router.post(
    "",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a comment",
)
async def create_comment(
    comment_data: CommentCreate,
    current_user: CurrentUser,
    db: DbSession,
    settings: AppSettings,
):
    """
    Post a comment as the signed-in user.

    - **title**: up to 128 characters after markup is stripped
    - **body**: up to 4000 characters after markup is stripped

    A user can have at most `max_comments_per_user` comments at once.
    """
    title = strip_markup(comment_data.title)
    body = strip_markup(comment_data.body)

    if not title or not body:
        raise BadRequestException("Title and body are required")
    if len(title) > settings.comment_title_max_length:
        raise BadRequestException(
            f"Title must be {settings.comment_title_max_length} characters or less"
        )
    if len(body) > settings.comment_body_max_length:
        raise BadRequestException(
            f"Comment must be {settings.comment_body_max_length} characters or less"
        )

    count_result = await db.execute(
        select(func.count()).select_from(Comment).where(Comment.user_id == current_user.id)
    )
    if (count_result.scalar() or 0) >= settings.max_comments_per_user:
        raise BadRequestException(
            f"You can have at most {settings.max_comments_per_user} comments. Delete one to post again.",
            code="COMMENT_LIMIT_REACHED",
        )

    comment = Comment(
        user_id=current_user.id,
        title=title,
        body=body,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)

    logger.info(f"User {current_user.id} posted comment {comment.id}")
    return _to_response(comment, current_user.username)


@router.delete(
    "/{comment_id}",
    response_model=MessageResponse,
    summary="Delete your comment",
)
async def delete_comment(comment_id: int, current_user: CurrentUser, db: DbSession):
    """Delete a comment. Only its author may do so."""
    result = await db.execute(
        select(Comment).where(Comment.id == comment_id)
    )
    comment = result.scalar_one_or_none()

    if not comment:
        raise NotFoundException("Comment not found")

    if comment.user_id != current_user.id:
        raise ForbiddenException("You can only delete your own comments")

    await db.delete(comment)
    await db.commit()

    logger.info(f"User {current_user.id} deleted comment {comment_id}")
    return MessageResponse()
