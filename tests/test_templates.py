"""Tests for %{placeholder} prompt templates."""

import pytest

from helixmem.protocols import TemplateError
from helixmem.templates import placeholders, render_template, validate_template


class TestPlaceholders:
    def test_in_order_without_repeats(self):
        assert placeholders("%{b} then %{a} then %{b}") == ["b", "a"]

    def test_escaped_percent_is_not_a_placeholder(self):
        assert placeholders("100%% sure about %%{x}") == []

    def test_empty_template(self):
        assert placeholders("") == []
        assert placeholders(None) == []


class TestRender:
    def test_substitutes_values(self):
        assert render_template("Hi %{name}!", {"name": "Ada"}) == "Hi Ada!"

    def test_double_percent_renders_literal(self):
        assert render_template("100%% %{x}", {"x": "done"}) == "100% done"

    def test_lone_percent_survives(self):
        assert render_template("50% of %{x}", {"x": "it"}) == "50% of it"

    def test_missing_value_raises(self):
        with pytest.raises(TemplateError) as exc:
            render_template("%{known} %{unknown}", {"known": "a"})
        assert exc.value.placeholder == "unknown"
        assert exc.value.allowed == ["known"]

    def test_values_are_not_re_expanded(self):
        assert render_template("%{a}", {"a": "%{b}"}) == "%{b}"


class TestValidate:
    def test_allowed_placeholders_pass(self):
        validate_template("%{system_prompt}\n%{existing_memories}", ["system_prompt", "existing_memories"])

    def test_unknown_placeholder_names_allowed_ones(self):
        with pytest.raises(TemplateError, match="Allowed: %\\{a\\}, %\\{b\\}"):
            validate_template("%{c}", ["b", "a"])

    def test_template_error_is_a_validation_error(self):
        with pytest.raises(ValueError):
            validate_template("%{nope}", [])
