"""Unit tests for goalpilot.models: model constants, pricing and defaults."""

from __future__ import annotations

from goalpilot import models
from goalpilot.models import MODELS, PRICING


# ---------------------------------------------------------------------------
# 1. MODELS and PRICING
# ---------------------------------------------------------------------------

class TestModelsDict:

    def test_roles(self):
        assert set(MODELS) == {"planner", "evaluator"}

    def test_model_ids_are_claude(self):
        for role, model_id in MODELS.items():
            assert "claude" in model_id, f"MODELS['{role}'] = '{model_id}'"

    def test_every_model_is_priced(self):
        for role, model_id in MODELS.items():
            assert model_id in PRICING, f"Model '{model_id}' (role: {role}) has no entry in PRICING"

    def test_pricing_is_positive(self):
        for model_id, prices in PRICING.items():
            assert prices["input"] > 0, model_id
            assert prices["output"] >= prices["input"], model_id


# ---------------------------------------------------------------------------
# 2. Defaults
# ---------------------------------------------------------------------------

class TestDefaults:

    def test_rate_limit_schedule_escalates(self):
        delays = models.RATE_LIMIT_DELAYS
        assert list(delays) == sorted(delays)
        assert delays[0] > 0

    def test_ceiling_floor_is_reachable(self):
        assert 0 < models.CEILING_FLOOR < models.DEFAULT_CALLS_PER_WINDOW

    def test_confidence_threshold_in_range(self):
        assert 0.0 < models.CONFIDENCE_THRESHOLD < 1.0

    def test_viewport(self):
        width, height = models.DEFAULT_VIEWPORT
        assert width > height > 0
