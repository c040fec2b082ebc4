"""
Standard comment parsing and the immutable default catalog.

Architecture: automation_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

from automation_batch.domain.types import CommentVisibility, StandardComment


def parse_visibility(data: Mapping[str, Any] | None) -> CommentVisibility:
    data = data or {}
    return CommentVisibility(
        document_types=tuple(data.get("documentTypes") or ()),
        statuses=tuple(data.get("statuses") or ()),
        actions=tuple(data.get("actions") or ()),
    )


def visibility_to_dict(visibility: CommentVisibility) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    if visibility.document_types:
        out["documentTypes"] = list(visibility.document_types)
    if visibility.statuses:
        out["statuses"] = list(visibility.statuses)
    if visibility.actions:
        out["actions"] = list(visibility.actions)
    return out


def parse_comment(
    data: Mapping[str, Any],
    tenant_id: str = "default",
    is_default: bool = False,
) -> StandardComment:
    """Build a StandardComment from a camelCase mapping.

    Raises:
        KeyError: Missing ``id``, ``category`` or ``text``.
    """
    return StandardComment(
        comment_id=data["id"],
        tenant_id=data.get("tenantId", tenant_id),
        category=data["category"],
        text=data["text"],
        shortcut=data.get("shortcut"),
        company_id=data.get("companyId"),
        show_for=parse_visibility(data.get("showFor")),
        is_default=is_default,
        usage_count=int(data.get("usageCount", 0)),
        created_by=data.get("createdBy", "system"),
    )


def comment_matches(
    comment: StandardComment,
    company_id: str | None = None,
    category: str | None = None,
    action: str | None = None,
) -> bool:
    """Filter used when listing comments.

    A comment without a company scope is visible to every company, and one
    without an action list is offered for every action.
    """
    if category is not None and comment.category != category:
        return False
    if action is not None and not comment.show_for.allows_action(action):
        return False
    if company_id is not None and comment.company_id not in (None, company_id):
        return False
    return True


@dataclass(frozen=True)
class CommentCatalog:
    """Immutable set of built-in standard comments."""

    comments: tuple[StandardComment, ...] = ()

    def __len__(self) -> int:
        return len(self.comments)

    def for_tenant(self, tenant_id: str) -> tuple[StandardComment, ...]:
        return tuple(replace(c, tenant_id=tenant_id) for c in self.comments)

    @classmethod
    def from_dicts(cls, items: list[Mapping[str, Any]]) -> CommentCatalog:
        return cls(comments=tuple(parse_comment(d, is_default=True) for d in items))
