# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Property-based fuzz tests using Hypothesis.

Verifies invariants hold for arbitrary inputs across the frame codec,
the rule filter and the cache key scheme.
"""

from __future__ import annotations

try:
    from hypothesis import HealthCheck, given, settings
    from hypothesis import strategies as st
except ImportError:
    import pytest

    pytest.skip("hypothesis not installed", allow_module_level=True)

import io

import pytest

from critical_assets import CoverageRange
from critical_assets.above_fold import rule_is_above_fold, select_critical_rules
from critical_assets.cache import build_critical_css_key, build_critical_js_key
from critical_assets.ws_frame import decode_frame, encode_text_frame

# ---------------------------------------------------------------------------
# Module-level strategies
# ---------------------------------------------------------------------------

PAYLOADS = st.binary(min_size=0, max_size=70_000)

CSS_TEXT = st.text(
    alphabet=st.characters(
        categories=("L", "N"),
        include_characters="{}:;.#*@-_ \n",
    ),
    min_size=0,
    max_size=500,
)

TOKENS = st.sets(st.text(min_size=0, max_size=12), max_size=20)


# ---------------------------------------------------------------------------
# Frame codec
# ---------------------------------------------------------------------------


@pytest.mark.slow
@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(payload=PAYLOADS, mask=st.binary(min_size=4, max_size=4))
def test_frame_round_trip(payload, mask):
    assert decode_frame(io.BytesIO(encode_text_frame(payload, mask=mask)).read) == payload


@settings(max_examples=200, deadline=None)
@given(data=st.binary(max_size=300))
def test_decode_never_raises_on_garbage(data):
    assert isinstance(decode_frame(io.BytesIO(data).read), bytes)


# ---------------------------------------------------------------------------
# Rule filter
# ---------------------------------------------------------------------------


@settings(max_examples=200, deadline=None)
@given(rule=CSS_TEXT, tokens=TOKENS)
def test_at_rules_always_kept(rule, tokens):
    assert rule_is_above_fold("@" + rule, tokens)


@settings(max_examples=200, deadline=None)
@given(rule=CSS_TEXT, tokens=TOKENS)
def test_more_tokens_never_drop_rules(rule, tokens):
    if rule_is_above_fold(rule, tokens):
        assert rule_is_above_fold(rule, tokens | {"extra-token"})


@settings(max_examples=100, deadline=None)
@given(text=CSS_TEXT, cuts=st.lists(st.tuples(st.integers(0, 500), st.integers(0, 500)), max_size=10), tokens=TOKENS)
def test_selected_rules_are_trimmed_slices(text, cuts, tokens):
    usage = [CoverageRange("s", min(a, b), max(a, b), True) for a, b in cuts]
    rules = select_critical_rules(usage, lambda _sid: text, tokens)
    for rule in rules:
        assert rule
        assert rule == rule.strip()
        assert rule in text


# ---------------------------------------------------------------------------
# Cache keys
# ---------------------------------------------------------------------------


@settings(max_examples=200, deadline=None)
@given(
    page_id=st.integers(0, 10**9),
    viewport=st.sampled_from(["mobile", "desktop", "tablet"]),
    language_id=st.integers(0, 100),
    workspace_id=st.integers(0, 100),
)
def test_keys_have_fixed_shape(page_id, viewport, language_id, workspace_id):
    css = build_critical_css_key(page_id, viewport, language_id, workspace_id)
    js = build_critical_js_key(page_id, viewport, language_id, workspace_id)
    assert css.startswith("critical_css_") and len(css) == len("critical_css_") + 40
    assert js.startswith("critical_js_") and len(js) == len("critical_js_") + 40
