"""Tests for {{ variable }} template rendering."""

from __future__ import annotations

import html

from eatlocal.core.templates import format_value, render_template


def test_substitutes_variables():
    out = render_template("Hi {{ name }}, order {{order_id}} is ready", {"name": "Thabo", "order_id": 42})
    assert out == "Hi Thabo, order 42 is ready"


def test_missing_and_none_render_empty():
    assert render_template("[{{ a }}][{{ b }}]", {"b": None}) == "[][]"
    assert render_template("[{{ a }}]", None) == "[]"


def test_booleans_render_lowercase():
    assert render_template("{{ t }}/{{ f }}", {"t": True, "f": False}) == "true/false"


def test_floats_use_str():
    assert render_template("R{{ total }}", {"total": 149.5}) == "R149.5"


def test_repeated_variable():
    assert render_template("{{ x }}-{{ x }}", {"x": "a"}) == "a-a"


def test_text_without_markers_is_unchanged():
    text = "No variables {here} or {{ not closed"
    assert render_template(text, {"here": "x"}) == text


def test_rendering_is_idempotent_for_plain_values():
    once = render_template("Hello {{ name }}", {"name": "Lerato"})
    assert render_template(once, {"name": "other"}) == once


def test_encoder_applies_to_values_only():
    out = render_template("<b>{{ name }}</b>", {"name": "<script>"}, encode=html.escape)
    assert out == "<b>&lt;script&gt;</b>"


def test_format_value():
    assert format_value(None) == ""
    assert format_value(True) == "true"
    assert format_value(0) == "0"
