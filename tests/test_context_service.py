import random
from datetime import datetime

import pytest

from quest_runner.runner_config import RunnerConfig
from quest_runner.services.context_service import (
    DYNAMIC_EMAIL_KEY,
    apply_substitutions,
    generate_context,
    placeholder,
    reverse_substitutions,
)

CTX = {DYNAMIC_EMAIL_KEY: "quest.runner+oct18123456@example.com"}


class TestGenerateContext:
    def test_email_shape(self):
        ctx = generate_context(RunnerConfig(), now=datetime(2026, 10, 18), rng=random.Random(1))
        email = ctx[DYNAMIC_EMAIL_KEY]
        assert email.startswith("quest.runner+oct18")
        assert email.endswith("@example.com")
        digits = email.split("+")[1].split("@")[0][len("oct18"):]
        assert len(digits) == 6 and digits.isdigit()

    def test_context_is_read_only(self):
        ctx = generate_context(RunnerConfig())
        with pytest.raises(TypeError):
            ctx[DYNAMIC_EMAIL_KEY] = "x"  # type: ignore[index]

    def test_uses_configured_domain(self):
        ctx = generate_context(RunnerConfig(email_local_part="qa", email_domain="corp.test"))
        assert ctx[DYNAMIC_EMAIL_KEY].startswith("qa+")
        assert ctx[DYNAMIC_EMAIL_KEY].endswith("@corp.test")


class TestSubstitutions:
    def test_apply_replaces_placeholder(self):
        params = {"text": placeholder(DYNAMIC_EMAIL_KEY), "selector": "#email"}
        assert apply_substitutions(params, CTX) == {"text": CTX[DYNAMIC_EMAIL_KEY], "selector": "#email"}

    def test_apply_replaces_every_occurrence(self):
        params = {"text": "{{dynamicEmail}} / {{dynamicEmail}}"}
        out = apply_substitutions(params, CTX)
        assert out["text"] == f"{CTX[DYNAMIC_EMAIL_KEY]} / {CTX[DYNAMIC_EMAIL_KEY]}"

    def test_non_string_values_untouched(self):
        params = {"x": 10.5, "y": 20, "flag": None}
        assert apply_substitutions(params, CTX) == params

    def test_reverse_restores_placeholder(self):
        params = {"text": f"Email: {CTX[DYNAMIC_EMAIL_KEY]}"}
        assert reverse_substitutions(params, CTX) == {"text": "Email: {{dynamicEmail}}"}

    def test_inverse_law(self):
        params = {"text": "{{dynamicEmail}}", "selector": "input[name='email']", "nested": ["{{dynamicEmail}}"]}
        assert reverse_substitutions(apply_substitutions(params, CTX), CTX) == params

    def test_longer_value_wins(self):
        ctx = {"short": "abc", "long": "abcdef"}
        assert reverse_substitutions({"text": "abcdef"}, ctx) == {"text": "{{long}}"}

    def test_empty_context_returns_copy(self):
        params = {"text": "hello"}
        out = apply_substitutions(params, {})
        assert out == params and out is not params
