"""
StandardCommentService -- built-in review comments merged with tenant ones.

Contract:
    ``list_comments`` returns the catalog comments rebound to the tenant,
    overridden by stored comments sharing the same id, filtered by company,
    category and review action.  ``use_comment`` records that a reviewer
    picked a comment.

Invariants enforced:
    - Stored comment wins on id collision.
    - Usage is bumped with ``usage_count = usage_count + 1``; built-in
      comments have no row and are not counted.

Failure modes:
    - Unknown comment id -> StandardCommentNotFoundError.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import StandardCommentNotFoundError
from automation_kernel.logging_config import get_logger

from automation_batch.domain.comments import CommentCatalog, comment_matches
from automation_batch.domain.types import StandardComment
from automation_batch.models.batch import StandardCommentModel

logger = get_logger("batch.comments")


class StandardCommentService:
    def __init__(self, session: Session, clock: Clock, catalog: CommentCatalog):
        self._session = session
        self._clock = clock
        self._catalog = catalog

    def list_comments(
        self,
        tenant_id: str,
        company_id: str | None = None,
        category: str | None = None,
        action: str | None = None,
    ) -> list[StandardComment]:
        """Effective comments, built-ins first, then tenant additions."""
        merged: dict[str, StandardComment] = {
            c.comment_id: c for c in self._catalog.for_tenant(tenant_id)
        }
        for model in self._session.scalars(
            select(StandardCommentModel)
            .where(StandardCommentModel.tenant_id == tenant_id)
            .order_by(StandardCommentModel.created_at)
        ):
            merged[model.comment_id] = model.to_dto()

        return [
            c for c in merged.values()
            if comment_matches(c, company_id=company_id, category=category, action=action)
        ]

    def get_comment(self, tenant_id: str, comment_id: str) -> StandardComment:
        for comment in self.list_comments(tenant_id):
            if comment.comment_id == comment_id:
                return comment
        raise StandardCommentNotFoundError(tenant_id, comment_id)

    def save_comment(self, comment: StandardComment, actor: str) -> StandardComment:
        """Create or replace the tenant's stored comment."""
        now = self._clock.now_utc()
        model = self._stored(comment.tenant_id, comment.comment_id)
        if model is None:
            model = StandardCommentModel.from_dto(comment, actor)
            model.created_at = now
            model.updated_at = now
            self._session.add(model)
        else:
            model.apply_dto(comment, actor)
            model.updated_at = now
        self._session.flush()

        logger.info(
            "standard_comment_saved",
            extra={"comment_id": comment.comment_id, "category": comment.category},
        )
        return model.to_dto()

    def use_comment(self, tenant_id: str, comment_id: str) -> StandardComment:
        """Count one use of a comment and return it.

        Raises:
            StandardCommentNotFoundError: Neither built-in nor stored.
        """
        result = self._session.execute(
            update(StandardCommentModel)
            .where(
                StandardCommentModel.tenant_id == tenant_id,
                StandardCommentModel.comment_id == comment_id,
            )
            .values(
                usage_count=StandardCommentModel.usage_count + 1,
                last_used_at=self._clock.now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            # Built-in comment, nothing to count
            return self.get_comment(tenant_id, comment_id)

        model = self._stored(tenant_id, comment_id)
        self._session.refresh(model)
        logger.info(
            "standard_comment_used",
            extra={"comment_id": comment_id, "usage_count": model.usage_count},
        )
        return model.to_dto()

    def _stored(self, tenant_id: str, comment_id: str) -> StandardCommentModel | None:
        return self._session.scalars(
            select(StandardCommentModel).where(
                StandardCommentModel.tenant_id == tenant_id,
                StandardCommentModel.comment_id == comment_id,
            )
        ).first()
