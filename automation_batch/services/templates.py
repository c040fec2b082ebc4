"""
TemplateService -- built-in templates merged with tenant templates.

Contract:
    ``list_templates`` returns catalog defaults rebound to the tenant,
    overridden by stored templates sharing the same id.  ``apply_template``
    resolves the template's variables and creates an APPLY_TEMPLATE bulk
    operation over the given targets.

Invariants enforced:
    - Stored template wins on id collision.
    - Usage is bumped with ``usage_count = usage_count + 1``; built-in
      templates have no row and are not counted.

Failure modes:
    - Unknown template id -> TemplateNotFoundError.
    - Required variable without value or default -> MissingTemplateVariableError.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import TemplateNotFoundError
from automation_kernel.logging_config import get_logger

from automation_batch.domain.templates import TemplateCatalog, merge_template_variables
from automation_batch.domain.types import (
    BulkActionType,
    BulkOperation,
    Template,
    TemplateCategory,
    TargetType,
)
from automation_batch.models.batch import TemplateModel
from automation_batch.services.bulk_operations import BulkOperationService

logger = get_logger("batch.templates")


class TemplateService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        catalog: TemplateCatalog,
        bulk_service: BulkOperationService,
    ):
        self._session = session
        self._clock = clock
        self._catalog = catalog
        self._bulk = bulk_service

    def list_templates(
        self,
        tenant_id: str,
        company_id: str | None = None,
        category: TemplateCategory | str | None = None,
    ) -> list[Template]:
        """Effective templates.

        With ``company_id`` a template is visible when it is unscoped, scoped
        to that company, or public.
        """
        merged: dict[str, Template] = {
            t.template_id: t for t in self._catalog.for_tenant(tenant_id)
        }
        for model in self._session.scalars(
            select(TemplateModel)
            .where(TemplateModel.tenant_id == tenant_id)
            .order_by(TemplateModel.created_at)
        ):
            merged[model.template_id] = model.to_dto()

        templates = list(merged.values())
        if category is not None:
            wanted = TemplateCategory(category)
            templates = [t for t in templates if t.category == wanted]
        if company_id is not None:
            templates = [
                t for t in templates
                if t.company_id is None or t.company_id == company_id or t.is_public
            ]
        return templates

    def get_template(self, tenant_id: str, template_id: str) -> Template:
        for template in self.list_templates(tenant_id):
            if template.template_id == template_id:
                return template
        raise TemplateNotFoundError(tenant_id, template_id)

    def save_template(self, template: Template, actor: str) -> Template:
        """Create or replace the tenant's stored template."""
        now = self._clock.now_utc()
        model = self._stored(template.tenant_id, template.template_id)
        if model is None:
            model = TemplateModel.from_dto(template, actor)
            model.created_at = now
            model.updated_at = now
            self._session.add(model)
        else:
            model.apply_dto(template, actor)
            model.updated_at = now
        self._session.flush()

        logger.info(
            "template_saved",
            extra={"template_id": template.template_id, "category": template.category.value},
        )
        return model.to_dto()

    def apply_template(
        self,
        tenant_id: str,
        template_id: str,
        variables: dict[str, Any],
        target_ids: Any,
        company_id: str | None = None,
        created_by: str = "system",
    ) -> BulkOperation:
        """Create an APPLY_TEMPLATE bulk operation with the merged content."""
        template = self.get_template(tenant_id, template_id)
        content = merge_template_variables(template, variables)
        targets = tuple(target_ids)

        self._bump_usage(tenant_id, template_id)

        operation = self._bulk.create_operation(
            tenant_id=tenant_id,
            company_id=company_id or template.company_id or "",
            operation_type=BulkActionType.APPLY_TEMPLATE,
            name=f"Apply template: {template.name}",
            description=f'Applies template "{template.name}" to {len(targets)} items',
            target_type=TargetType.DOCUMENT,
            target_ids=targets,
            action=content,
            created_by=created_by,
            created_by_name="System" if created_by == "system" else None,
        )
        logger.info(
            "template_applied",
            extra={
                "template_id": template_id,
                "operation_id": str(operation.operation_id),
                "target_count": operation.target_count,
            },
        )
        return operation

    def _bump_usage(self, tenant_id: str, template_id: str) -> None:
        result = self._session.execute(
            update(TemplateModel)
            .where(
                TemplateModel.tenant_id == tenant_id,
                TemplateModel.template_id == template_id,
            )
            .values(
                usage_count=TemplateModel.usage_count + 1,
                last_used_at=self._clock.now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            model = self._stored(tenant_id, template_id)
            if model is not None:
                self._session.refresh(model)

    def _stored(self, tenant_id: str, template_id: str) -> TemplateModel | None:
        return self._session.scalars(
            select(TemplateModel).where(
                TemplateModel.tenant_id == tenant_id,
                TemplateModel.template_id == template_id,
            )
        ).first()
