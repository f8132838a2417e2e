import pytest

from harmony_ai.quota.tiers import StaticTierLimits, is_unlimited


def test_default_tier_table():
    limits = StaticTierLimits()

    assert limits.get_limit("free", "ai_generations") == 10
    assert limits.get_limit("free", "prompt_refinements") == 20
    assert limits.get_limit("premium", "ai_generations") == 100
    assert limits.get_limit("creator", "ai_generations") == 0
    assert is_unlimited(limits.get_limit("enterprise", "storage_usage"))


def test_unknown_tier_falls_back_to_free():
    limits = StaticTierLimits()

    assert limits.get_limit("platinum", "ai_generations") == 10
    assert limits.get_limit(None, "ai_generations") == 10


def test_tier_names_are_case_insensitive():
    assert StaticTierLimits().get_limit("Premium", "track_uploads") == 50


@pytest.mark.parametrize("limit, expected", [(0, True), (-1, True), (1, False)])
def test_unlimited_sentinel(limit, expected):
    assert is_unlimited(limit) is expected


def test_yaml_overrides(tmp_path):
    """Test a YAML file overrides single values and adds tiers."""
    path = tmp_path / "tiers.yaml"
    path.write_text(
        "tiers:\n"
        "  premium:\n"
        "    ai_generations_monthly: 150\n"
        "  studio:\n"
        "    prompt_refinements: 500\n"
    )

    limits = StaticTierLimits.from_yaml(str(path))

    assert limits.get_limit("premium", "ai_generations") == 150
    assert limits.get_limit("premium", "prompt_refinements") == 200
    assert limits.get_limit("studio", "prompt_refinements") == 500
    # Metrics missing from a tier use the free tier's value
    assert limits.get_limit("studio", "ai_generations") == 10
