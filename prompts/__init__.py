"""Prompt text for the narrative model.

Prompts are Markdown files shipped inside this package and are formatted with
``str.format``. Setting ``ITINERARY_PLANNER_PROMPT_<NAME>`` to a file path or
to literal text replaces one without editing the package.
"""
from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

__all__ = ["load_prompt", "render_prompt"]

_ENV_PREFIX = "ITINERARY_PLANNER_PROMPT_"


def _read_override(value: str) -> str:
    try:
        is_file = Path(value).is_file()
    except OSError:
        # Literal prompt text can be longer than the OS allows for a path.
        is_file = False
    return Path(value).read_text(encoding="utf-8") if is_file else value


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """Raw text of prompt ``name``; ``<name>.md`` unless overridden."""
    override = os.getenv(_ENV_PREFIX + name.upper())
    if override:
        return _read_override(override)

    resource = resources.files(__name__).joinpath(f"{name}.md")
    if not resource.is_file():
        raise FileNotFoundError(f"No prompt named {name!r} in the {__name__} package")
    return resource.read_text(encoding="utf-8")


def render_prompt(name: str, **fields: Any) -> str:
    return load_prompt(name).format(**fields)
