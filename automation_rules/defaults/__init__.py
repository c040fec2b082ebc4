"""
Built-in rule catalog shipped with the package.

``load_default_catalog()`` reads ``rules.yaml`` from the package resources
and returns an immutable RuleCatalog.  Tenants override a default by
storing a rule with the same id.
"""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path

import yaml

from automation_rules.domain.rules import RuleCatalog


def load_catalog_file(path: Path | str) -> RuleCatalog:
    """Load a catalog from an arbitrary YAML file (``rules:`` list)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return RuleCatalog.from_dicts(data.get("rules") or [])


@lru_cache(maxsize=1)
def load_default_catalog() -> RuleCatalog:
    """The built-in catalog (parsed once; the result is immutable)."""
    text = resources.files(__name__).joinpath("rules.yaml").read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    return RuleCatalog.from_dicts(data.get("rules") or [])
