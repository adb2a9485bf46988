"""
Run-scoped dynamic values and placeholder substitution.

A run context maps keys (e.g. ``dynamicEmail``) to literal values generated
at run start. Persisted steps carry ``{{key}}`` placeholders; replayed steps
carry the literal values. ``apply_substitutions`` and
``reverse_substitutions`` convert between the two forms.
"""

from __future__ import annotations

import random
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from quest_runner.runner_config import RunnerConfig

RunContext = Mapping[str, str]

DYNAMIC_EMAIL_KEY = "dynamicEmail"


def placeholder(key: str) -> str:
    return "{{" + key + "}}"


def generate_context(
    config: RunnerConfig,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> RunContext:
    """Create the read-only substitution values for one run."""
    now = now or datetime.now()
    rng = rng or random.Random()
    short_date = f"{now.strftime('%b').lower()}{now.day}"
    suffix = rng.randint(100000, 999999)
    email = f"{config.email_local_part}+{short_date}{suffix}@{config.email_domain}"
    return MappingProxyType({DYNAMIC_EMAIL_KEY: email})


def _map_strings(value: Any, fn) -> Any:
    if isinstance(value, str):
        return fn(value)
    if isinstance(value, dict):
        return {k: _map_strings(v, fn) for k, v in value.items()}
    if isinstance(value, list):
        return [_map_strings(v, fn) for v in value]
    return value


def apply_substitutions(params: dict, ctx: RunContext) -> dict:
    """Replace every ``{{key}}`` in string fields with ``ctx[key]``."""
    if not ctx:
        return dict(params)

    def substitute(text: str) -> str:
        for key, value in ctx.items():
            text = text.replace(placeholder(key), value)
        return text

    return _map_strings(params, substitute)


def reverse_substitutions(params: dict, ctx: RunContext) -> dict:
    """Replace literal context values in string fields with ``{{key}}``."""
    if not ctx:
        return dict(params)

    # Longer values first so a value that contains another is not split.
    pairs = sorted(
        ((key, value) for key, value in ctx.items() if value),
        key=lambda kv: len(kv[1]),
        reverse=True,
    )

    def restore(text: str) -> str:
        for key, value in pairs:
            text = text.replace(value, placeholder(key))
        return text

    return _map_strings(params, restore)
