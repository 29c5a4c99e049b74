"""
Ahead-of-time compilation of versioning triggers to PL/pgSQL.

Provides:
- build_static_versioning_trigger: validate and build a GeneratedTrigger
- generate_static_versioning_trigger: the same, returning SQL text
- render_versioning_trigger: generate and install through a TriggerInstaller
"""

from .generator import (
    GeneratedTrigger,
    build_static_versioning_trigger,
    generate_static_versioning_trigger,
    render_versioning_trigger,
)
from .render import dollar_quote_tag, quote_literal, render

__all__ = [
    "GeneratedTrigger",
    "build_static_versioning_trigger",
    "generate_static_versioning_trigger",
    "render_versioning_trigger",
    "dollar_quote_tag",
    "quote_literal",
    "render",
]
