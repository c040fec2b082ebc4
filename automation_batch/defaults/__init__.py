"""Built-in catalogs shipped with the package (``templates.yaml``, ``comments.yaml``)."""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from typing import Any

import yaml

from automation_batch.domain.comments import CommentCatalog
from automation_batch.domain.templates import TemplateCatalog


def _load(filename: str) -> dict[str, Any]:
    text = resources.files(__name__).joinpath(filename).read_text(encoding="utf-8")
    return yaml.safe_load(text) or {}


@lru_cache(maxsize=1)
def load_default_templates() -> TemplateCatalog:
    return TemplateCatalog.from_dicts(_load("templates.yaml").get("templates") or [])


@lru_cache(maxsize=1)
def load_default_comments() -> CommentCatalog:
    return CommentCatalog.from_dicts(_load("comments.yaml").get("comments") or [])
