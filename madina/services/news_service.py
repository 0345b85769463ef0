"""
madina.services.news_service — News posts & comments
====================================================

Journalists, employees and admins publish posts; any signed-in user can
like and comment.  Comments are threaded one level deep: replies point at
a top-level comment through ``parent_comment_id``.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from madina.constants import iso
from madina.database.models import Comment, Post, User
from madina.engine.rbac import can_create_posts, is_admin

logger = logging.getLogger(__name__)


def post_to_dict(post: Post, author_email: str | None = None) -> dict:
    return {
        "id": post.id,
        "author_user_id": post.author_user_id,
        "author_email": author_email,
        "title": post.title,
        "content": post.content,
        "category": post.category,
        "image_url": post.image_url,
        "views": post.views,
        "likes": post.likes,
        "published_at": iso(post.published_at),
    }


def comment_to_dict(c: Comment, email: str | None = None) -> dict:
    return {
        "id": c.id,
        "post_id": c.post_id,
        "user_id": c.user_id,
        "user_email": email,
        "parent_comment_id": c.parent_comment_id,
        "content": c.content,
        "created_at": iso(c.created_at),
    }


def _posts_query():
    return (
        select(Post, User.email)
        .join(User, User.id == Post.author_user_id)
        .order_by(Post.published_at.desc(), Post.id.desc())
    )


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
def create_post(
    engine,
    author_id: int,
    *,
    title: str,
    content: str,
    category: str,
    image_url: str | None = None,
) -> Post:
    """Publish a post.

    Raises
    ------
    PermissionError
        The author's role may not publish.
    ValueError
        A required field is blank.
    """
    title = (title or "").strip()
    content = (content or "").strip()
    category = (category or "").strip()
    if not title or not content or not category:
        raise ValueError("Title, content and category are required")

    with Session(engine, expire_on_commit=False) as session:
        author = session.get(User, author_id)
        if author is None:
            raise ValueError("User not found")
        if not can_create_posts(author.role):
            raise PermissionError("You do not have permission to create posts")
        post = Post(
            author_user_id=author_id,
            title=title,
            content=content,
            category=category,
            image_url=(image_url or "").strip() or None,
            views=0,
            likes=0,
        )
        session.add(post)
        session.commit()
        session.refresh(post)
        session.expunge(post)

    logger.info("Post %s published by %s", post.id, author_id)
    return post


def get_all_posts(engine) -> list[dict]:
    with Session(engine) as session:
        return [post_to_dict(p, email) for p, email in session.execute(_posts_query()).all()]


def get_user_posts(engine, user_id: int) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(_posts_query().where(Post.author_user_id == user_id)).all()
        return [post_to_dict(p, email) for p, email in rows]


def get_post(engine, post_id: int) -> dict | None:
    """Fetch a post and count the view."""
    with Session(engine) as session:
        result = session.execute(
            update(Post).where(Post.id == post_id).values(views=Post.views + 1)
        )
        if not result.rowcount:
            return None
        session.commit()
        row = session.execute(_posts_query().where(Post.id == post_id)).first()
        return post_to_dict(*row) if row else None


def like_post(engine, post_id: int) -> int | None:
    """Increment likes; returns the new count or ``None`` if no such post."""
    with Session(engine) as session:
        result = session.execute(
            update(Post).where(Post.id == post_id).values(likes=Post.likes + 1)
        )
        if not result.rowcount:
            return None
        session.commit()
        return session.scalar(select(Post.likes).where(Post.id == post_id))


def delete_post(engine, user_id: int, post_id: int) -> bool:
    """Delete a post and its comments.  Author or admin only."""
    with Session(engine) as session:
        post = session.get(Post, post_id)
        if post is None:
            return False
        user = session.get(User, user_id)
        if post.author_user_id != user_id and not (user and is_admin(user.role)):
            raise PermissionError("You can only delete your own posts")
        session.execute(delete(Comment).where(Comment.post_id == post_id))
        session.delete(post)
        session.commit()
        logger.info("Post %s deleted by %s", post_id, user_id)
        return True


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
def add_comment(
    engine, post_id: int, user_id: int, content: str, parent_comment_id: int | None = None,
) -> Comment:
    content = (content or "").strip()
    if not content:
        raise ValueError("Comment cannot be empty")
    with Session(engine, expire_on_commit=False) as session:
        if session.get(Post, post_id) is None:
            raise ValueError("Post not found")
        if parent_comment_id is not None:
            parent = session.get(Comment, parent_comment_id)
            if parent is None or parent.post_id != post_id:
                raise ValueError("Parent comment not found on this post")
        comment = Comment(
            post_id=post_id,
            user_id=user_id,
            content=content,
            parent_comment_id=parent_comment_id,
        )
        session.add(comment)
        session.commit()
        session.refresh(comment)
        session.expunge(comment)
        return comment


def reply_to_comment(
    engine, post_id: int, parent_comment_id: int, user_id: int, content: str,
) -> Comment:
    return add_comment(engine, post_id, user_id, content, parent_comment_id)


def get_post_comments(engine, post_id: int) -> list[dict]:
    """Top-level comments (oldest first), each with its ``replies``."""
    with Session(engine) as session:
        rows = session.execute(
            select(Comment, User.email)
            .join(User, User.id == Comment.user_id)
            .where(Comment.post_id == post_id)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        ).all()

    by_id: dict[int, dict] = {}
    roots: list[dict] = []
    for c, email in rows:
        item = comment_to_dict(c, email) | {"replies": []}
        by_id[c.id] = item
    for c, _ in rows:
        item = by_id[c.id]
        parent = by_id.get(c.parent_comment_id) if c.parent_comment_id else None
        if parent is not None:
            parent["replies"].append(item)
        else:
            roots.append(item)
    return roots
