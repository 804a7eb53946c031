from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from psycopg2.extensions import connection as PgConnection

from ...db import dict_cursor, managed_connection, require_row
from ..errors import ValidationError
from ..schemas.posts import Comment, CommentCreate, Post, PostAuthor, PostCreate, PostUpdate

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50
FEED_COMMENT_PREVIEW = 3

_POST_SELECT = """
    SELECT
        p.*,
        u.name AS author_name,
        u.picture AS author_picture,
        u.city AS author_city,
        u.state AS author_state,
        u.country AS author_country,
        (SELECT COUNT(*) FROM comments c WHERE c.post_id = p.id) AS comment_count,
        (SELECT COUNT(*) FROM post_likes l WHERE l.post_id = p.id) AS like_count,
        EXISTS (
            SELECT 1 FROM post_likes l WHERE l.post_id = p.id AND l.user_id = %s
        ) AS is_liked
    FROM posts p
    JOIN users u ON u.id = p.user_id
"""


def _row_to_comment(row: Mapping[str, Any]) -> Comment:
    return Comment(
        id=str(row["id"]),
        post_id=str(row["post_id"]),
        user_id=str(row["user_id"]),
        content=row["content"],
        user=PostAuthor(
            id=str(row["user_id"]),
            name=row["author_name"],
            picture=row.get("author_picture"),
        ),
        created_at=row["created_at"],
    )


def _row_to_post(row: Mapping[str, Any], comments: Sequence[Comment] = ()) -> Post:
    return Post(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        content=row["content"],
        images=list(row.get("images") or []),
        likes=row.get("likes", 0),
        views=row.get("views", 0),
        is_published=row.get("is_published", True),
        user=PostAuthor(
            id=str(row["user_id"]),
            name=row["author_name"],
            picture=row.get("author_picture"),
            city=row.get("author_city"),
            state=row.get("author_state"),
            country=row.get("author_country"),
        ),
        comments=list(comments),
        counts={
            "comments": int(row.get("comment_count") or 0),
            "likes": int(row.get("like_count") or 0),
        },
        is_liked=bool(row.get("is_liked")),
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def _load_comments(cur, post_ids: Sequence[str], *, per_post: Optional[int]) -> Dict[str, List[Comment]]:
    """Return comments grouped by post, newest first, optionally capped per post."""

    grouped: Dict[str, List[Comment]] = defaultdict(list)
    if not post_ids:
        return grouped
    cap_clause = "WHERE ranked.rn <= %s" if per_post is not None else ""
    params: List[object] = [list(post_ids)]
    if per_post is not None:
        params.append(per_post)
    cur.execute(
        f"""
        SELECT ranked.*
        FROM (
            SELECT
                c.*,
                u.name AS author_name,
                u.picture AS author_picture,
                ROW_NUMBER() OVER (PARTITION BY c.post_id ORDER BY c.created_at DESC) AS rn
            FROM comments c
            JOIN users u ON u.id = c.user_id
            WHERE c.post_id = ANY(%s::uuid[])
        ) ranked
        {cap_clause}
        ORDER BY ranked.post_id, ranked.created_at DESC
        """,
        params,
    )
    for row in cur.fetchall():
        grouped[str(row["post_id"])].append(_row_to_comment(row))
    return grouped


def _list_published(
    where_sql: str,
    params: Sequence[object],
    *,
    page: int,
    limit: int,
    viewer_id: Optional[str],
    conn: Optional[PgConnection],
) -> Tuple[List[Post], int]:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                {_POST_SELECT}
                WHERE {where_sql}
                ORDER BY p.created_at DESC
                LIMIT %s OFFSET %s
                """,
                [viewer_id, *params, limit, (page - 1) * limit],
            )
            rows = cur.fetchall()
            comments = _load_comments(
                cur, [str(row["id"]) for row in rows], per_post=FEED_COMMENT_PREVIEW
            )
            cur.execute(f"SELECT COUNT(*) AS total FROM posts p WHERE {where_sql}", list(params))
            total = int(cur.fetchone()["total"])
    return [_row_to_post(row, comments.get(str(row["id"]), [])) for row in rows], total


def list_feed(
    *,
    page: int,
    limit: int,
    viewer_id: Optional[str] = None,
    author_id: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> Tuple[List[Post], int]:
    """Published posts, newest first, each with its latest comments."""

    where = ["p.is_published"]
    params: List[object] = []
    if author_id:
        where.append("p.user_id = %s")
        params.append(author_id)
    return _list_published(
        " AND ".join(where), params, page=page, limit=limit, viewer_id=viewer_id, conn=conn
    )


def list_user_posts(
    user_id: str,
    *,
    page: int,
    limit: int,
    viewer_id: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> Tuple[List[Post], int]:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute("SELECT id FROM users WHERE id = %s AND is_active LIMIT 1", (user_id,))
            require_row(cur.fetchone(), "User not found")
        return list_feed(
            page=page, limit=limit, viewer_id=viewer_id, author_id=user_id, conn=connection
        )


def get_post(
    post_id: str,
    *,
    viewer_id: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> Post:
    """Return a published post with all of its comments and count the view."""

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "UPDATE posts SET views = views + 1 WHERE id = %s AND is_published",
                (post_id,),
            )
            if cur.rowcount == 0:
                require_row(None, "Post not found")
            cur.execute(f"{_POST_SELECT} WHERE p.id = %s", (viewer_id, post_id))
            row = require_row(cur.fetchone(), "Post not found")
            comments = _load_comments(cur, [post_id], per_post=None)
    return _row_to_post(row, comments.get(str(row["id"]), []))


def _fetch_post(cur, post_id: str, viewer_id: Optional[str]) -> Post:
    cur.execute(f"{_POST_SELECT} WHERE p.id = %s", (viewer_id, post_id))
    return _row_to_post(require_row(cur.fetchone(), "Post not found"))


def create_post(user_id: str, payload: PostCreate, *, conn: Optional[PgConnection] = None) -> Post:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "INSERT INTO posts (user_id, content, images) VALUES (%s, %s, %s) RETURNING id",
                (user_id, payload.content, list(payload.images)),
            )
            post_id = str(cur.fetchone()["id"])
            post = _fetch_post(cur, post_id, user_id)
    logger.info("Post created", extra={"post_id": post.id, "user_id": user_id})
    return post


def update_post(
    post_id: str,
    user_id: str,
    payload: PostUpdate,
    *,
    conn: Optional[PgConnection] = None,
) -> Post:
    updates = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if not updates:
        raise ValidationError("No changes provided")

    set_clauses = [f"{field} = %s" for field in updates]
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                UPDATE posts
                SET {', '.join(set_clauses)}, updated_at = NOW()
                WHERE id = %s AND user_id = %s
                RETURNING id
                """,
                [*updates.values(), post_id, user_id],
            )
            require_row(cur.fetchone(), "Post not found")
            return _fetch_post(cur, post_id, user_id)


def delete_post(post_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> None:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute("DELETE FROM posts WHERE id = %s AND user_id = %s", (post_id, user_id))
            if cur.rowcount == 0:
                require_row(None, "Post not found")


def toggle_like(post_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> bool:
    """Like the post, or remove the like when one exists. Returns the new state."""

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT id FROM posts WHERE id = %s AND is_published FOR UPDATE",
                (post_id,),
            )
            require_row(cur.fetchone(), "Post not found")

            cur.execute(
                """
                INSERT INTO post_likes (post_id, user_id)
                VALUES (%s, %s)
                ON CONFLICT (post_id, user_id) DO NOTHING
                """,
                (post_id, user_id),
            )
            liked = cur.rowcount > 0
            if not liked:
                cur.execute(
                    "DELETE FROM post_likes WHERE post_id = %s AND user_id = %s",
                    (post_id, user_id),
                )
            cur.execute(
                "UPDATE posts SET likes = GREATEST(likes + %s, 0) WHERE id = %s",
                (1 if liked else -1, post_id),
            )
    return liked


def add_comment(
    post_id: str,
    user_id: str,
    payload: CommentCreate,
    *,
    conn: Optional[PgConnection] = None,
) -> Comment:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT id FROM posts WHERE id = %s AND is_published LIMIT 1",
                (post_id,),
            )
            require_row(cur.fetchone(), "Post not found")
            cur.execute(
                """
                WITH inserted AS (
                    INSERT INTO comments (post_id, user_id, content)
                    VALUES (%s, %s, %s)
                    RETURNING *
                )
                SELECT inserted.*, u.name AS author_name, u.picture AS author_picture
                FROM inserted
                JOIN users u ON u.id = inserted.user_id
                """,
                (post_id, user_id, payload.content),
            )
            row = cur.fetchone()
    return _row_to_comment(row)


def delete_comment(comment_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> None:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "DELETE FROM comments WHERE id = %s AND user_id = %s",
                (comment_id, user_id),
            )
            if cur.rowcount == 0:
                require_row(None, "Comment not found")
