"""
madina.api.routes.news — Posts, likes and comments
==================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from madina.api.deps import (
    get_current_user,
    get_engine,
    get_news_author,
    maintenance_guard,
    service_errors,
)
from madina.services import news_service
from madina.services.news_service import comment_to_dict, post_to_dict

router = APIRouter(prefix="/news", tags=["news"], dependencies=[Depends(maintenance_guard)])


class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)
    category: str = Field(min_length=1, max_length=50)
    image_url: str | None = None


class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


@router.get("")
def list_posts(engine=Depends(get_engine)):
    return {"posts": news_service.get_all_posts(engine)}


@router.post("", status_code=201)
def create_post(
    body: PostCreate,
    user: dict = Depends(get_news_author),
    engine=Depends(get_engine),
):
    with service_errors():
        post = news_service.create_post(engine, user["id"], **body.model_dump())
    return post_to_dict(post, user["email"])


@router.get("/mine")
def my_posts(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"posts": news_service.get_user_posts(engine, user["id"])}


@router.get("/{post_id}")
def get_post(post_id: int, engine=Depends(get_engine)):
    found = news_service.get_post(engine, post_id)
    if found is None:
        raise HTTPException(404, "Post not found")
    return found


@router.delete("/{post_id}")
def delete_post(post_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        deleted = news_service.delete_post(engine, user["id"], post_id)
    if not deleted:
        raise HTTPException(404, "Post not found")
    return {"deleted": True}


@router.post("/{post_id}/like")
def like(post_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    likes = news_service.like_post(engine, post_id)
    if likes is None:
        raise HTTPException(404, "Post not found")
    return {"likes": likes}


@router.get("/{post_id}/comments")
def comments(post_id: int, engine=Depends(get_engine)):
    return {"comments": news_service.get_post_comments(engine, post_id)}


@router.post("/{post_id}/comments", status_code=201)
def add_comment(
    post_id: int,
    body: CommentCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        comment = news_service.add_comment(engine, post_id, user["id"], body.content)
    return comment_to_dict(comment, user["email"])


@router.post("/{post_id}/comments/{comment_id}/replies", status_code=201)
def reply(
    post_id: int,
    comment_id: int,
    body: CommentCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        comment = news_service.reply_to_comment(
            engine, post_id, comment_id, user["id"], body.content,
        )
    return comment_to_dict(comment, user["email"])
