"""Read-only article store over the notes application's articles table."""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.collaborators import ArticleContent, ArticleSummary
from notequeue.database.models.article import Article
from notequeue.errors import ArticleNotFoundError


class SqlArticleStore:
    """ArticleStore implementation. Soft-deleted articles count as missing."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self.session_factory = session_factory

    async def read_article_content(self, article_id: int) -> ArticleContent:
        async with self.session_factory() as session:
            stmt = (
                select(Article.title, Article.content)
                .where(Article.id == article_id)
                .where(Article.deleted_at.is_(None))
            )
            row = (await session.execute(stmt)).one_or_none()

        if row is None:
            raise ArticleNotFoundError(article_id)
        return ArticleContent(title=row.title, body=row.content)

    async def list_articles(self) -> list[ArticleSummary]:
        async with self.session_factory() as session:
            stmt = (
                select(Article.id, Article.slug, Article.title)
                .where(Article.deleted_at.is_(None))
                .order_by(Article.id)
            )
            rows = (await session.execute(stmt)).all()

        return [
            ArticleSummary(article_id=row.id, slug=row.slug, title=row.title)
            for row in rows
        ]
