"""
Template parsing, variable merging and the immutable default catalog.

Architecture: automation_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

from automation_kernel.exceptions import MissingTemplateVariableError

from automation_batch.domain.types import Template, TemplateCategory, TemplateVariable


def parse_variable(data: Mapping[str, Any]) -> TemplateVariable:
    return TemplateVariable(
        name=data["name"],
        label=data.get("label") or data["name"],
        var_type=data.get("type", "text"),
        required=bool(data.get("required", False)),
        default_value=data.get("defaultValue"),
        options=tuple(data.get("options") or ()),
        validation=dict(data.get("validation") or {}),
    )


def parse_template(
    data: Mapping[str, Any],
    tenant_id: str = "default",
    is_default: bool = False,
) -> Template:
    """Build a Template from a camelCase mapping (YAML or stored JSON).

    Raises:
        KeyError: Missing ``id`` or ``name``.
        ValueError: Unknown category.
    """
    return Template(
        template_id=data["id"],
        tenant_id=data.get("tenantId", tenant_id),
        category=TemplateCategory(data["category"]),
        name=data["name"],
        description=data.get("description", ""),
        content=dict(data.get("content") or {}),
        variables=tuple(parse_variable(v) for v in data.get("variables") or ()),
        tags=tuple(data.get("tags") or ()),
        company_id=data.get("companyId"),
        is_default=is_default or bool(data.get("isDefault", False)),
        is_public=bool(data.get("isPublic", True)),
        usage_count=int(data.get("usageCount", 0)),
        created_by=data.get("createdBy", "system"),
    )


def variable_to_dict(variable: TemplateVariable) -> dict[str, Any]:
    out: dict[str, Any] = {
        "name": variable.name,
        "label": variable.label,
        "type": variable.var_type,
        "required": variable.required,
    }
    if variable.default_value is not None:
        out["defaultValue"] = variable.default_value
    if variable.options:
        out["options"] = list(variable.options)
    if variable.validation:
        out["validation"] = dict(variable.validation)
    return out


def merge_template_variables(
    template: Template, provided: Mapping[str, Any],
) -> dict[str, Any]:
    """Template content with each declared variable resolved.

    Precedence per variable: provided value, then default value.  A required
    variable with neither raises.  Undeclared provided keys are ignored.

    Raises:
        MissingTemplateVariableError: Required variable not resolvable.
    """
    merged = dict(template.content)
    for variable in template.variables:
        if provided.get(variable.name) is not None:
            merged[variable.name] = provided[variable.name]
        elif variable.default_value is not None:
            merged[variable.name] = variable.default_value
        elif variable.required:
            raise MissingTemplateVariableError(template.template_id, variable.name)
    return merged


@dataclass(frozen=True)
class TemplateCatalog:
    """Immutable set of built-in templates, keyed by template id."""

    templates: tuple[Template, ...] = ()

    def __len__(self) -> int:
        return len(self.templates)

    def get(self, template_id: str) -> Template | None:
        for template in self.templates:
            if template.template_id == template_id:
                return template
        return None

    def for_tenant(self, tenant_id: str) -> tuple[Template, ...]:
        return tuple(replace(t, tenant_id=tenant_id) for t in self.templates)

    @classmethod
    def from_dicts(cls, items: list[Mapping[str, Any]]) -> TemplateCatalog:
        return cls(templates=tuple(parse_template(d, is_default=True) for d in items))
