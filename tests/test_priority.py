"""
Tests for the Priority Classifier and Policy Registry.
"""

import pytest

from hookguard.config import EngineConfig, FamilyConfig, PolicyOverride
from hookguard.models import BlockingBehavior, Event, OperationKind, Tier
from hookguard.policy.priority import PriorityClassifier
from hookguard.policy.registry import PolicyRegistry
from hookguard.policy.rules import PolicyRule


class TestClassify:
    """Test suite for descriptor resolution."""

    def test_builtin_policy(self):
        """Known policies resolve from the static table."""
        d = PriorityClassifier().classify("duplicate-naming")
        assert d.tier is Tier.CRITICAL
        assert d.family == "file_hygiene"
        assert d.timeout_ms == 1000
        assert d.blocking_behavior is BlockingBehavior.HARD_BLOCK

    def test_unknown_policy_defaults(self):
        """Unknown ids get medium tier, warning, 3000ms."""
        d = PriorityClassifier().classify("something-new")
        assert d.tier is Tier.MEDIUM
        assert d.blocking_behavior is BlockingBehavior.WARNING
        assert d.timeout_ms == 3000

    def test_config_override_wins(self):
        """A config policy entry overrides tier, family and timeout."""
        config = EngineConfig(
            policies={"test-bypass": PolicyOverride(tier=Tier.HIGH, family="security", timeout_ms=1500)}
        )
        d = PriorityClassifier(config).classify("test-bypass")
        assert d.tier is Tier.HIGH
        assert d.family == "security"
        assert d.timeout_ms == 1500
        assert d.blocking_behavior is BlockingBehavior.SOFT_BLOCK

    def test_family_config_changes_blocking(self):
        """Family config can change blocking behavior and timeout."""
        config = EngineConfig(
            families={"testing": FamilyConfig(timeout_ms=900, blocking_behavior=BlockingBehavior.HARD_BLOCK)}
        )
        d = PriorityClassifier(config).classify("test-bypass")
        assert d.timeout_ms == 900
        assert d.blocking_behavior is BlockingBehavior.HARD_BLOCK

    def test_describe_explicit_rule(self):
        """Explicit rules register a new descriptor."""
        classifier = PriorityClassifier()
        d = classifier.describe("custom", PolicyRule(Tier.LOW, "documentation", 500))
        assert d.tier is Tier.LOW
        assert d.blocking_behavior is BlockingBehavior.NONE
        assert classifier.classify("custom") == d


class TestStrategy:
    """Test suite for execution strategy and early stop rules."""

    @pytest.mark.parametrize("tier,strategy", [
        (Tier.CRITICAL, "sequential"),
        (Tier.HIGH, "parallel"),
        (Tier.MEDIUM, "parallel"),
        (Tier.LOW, "parallel"),
        (Tier.BACKGROUND, "async"),
    ])
    def test_execution_strategy(self, tier, strategy):
        """Each tier maps to its execution strategy."""
        assert PriorityClassifier().get_execution_strategy(tier) == strategy

    def test_should_stop_on_failure(self):
        """Critical always stops; high only for hard-block families."""
        c = PriorityClassifier()
        assert c.should_stop_on_failure(Tier.CRITICAL, "documentation")
        assert c.should_stop_on_failure(Tier.HIGH, "infrastructure_protection")
        assert not c.should_stop_on_failure(Tier.HIGH, "security")
        assert not c.should_stop_on_failure(Tier.MEDIUM, "file_hygiene")

    def test_concurrency_limits(self):
        """Default ceilings grow with tier."""
        c = PriorityClassifier()
        assert [c.concurrency_limit(t) for t in (Tier.CRITICAL, Tier.HIGH, Tier.MEDIUM)] == [1, 3, 5]

    def test_statistics_and_validation(self):
        """Statistics count the table; validation reports bad tiers."""
        c = PriorityClassifier()
        stats = c.statistics()
        assert stats["total"] == 8
        assert stats["by_tier"]["critical"] == 2

        result = c.validate_entry({"id": "x", "tier": "urgent", "family": "security"})
        assert not result["valid"]
        assert "Invalid tier: urgent" in result["errors"]


class TestRegistry:
    """Test suite for PolicyRegistry."""

    def test_registration_order_and_duplicates(self):
        """Entries keep registration order; duplicate ids are rejected."""
        registry = PolicyRegistry(PriorityClassifier())
        registry.register("a", lambda e: None)
        registry.register("b", lambda e: None)
        assert [e.order for e in registry] == [0, 1]

        with pytest.raises(ValueError):
            registry.register("a", lambda e: None)

    def test_applicable_filters_kinds_and_families(self):
        """Disabled families and non-matching kinds are skipped."""
        config = EngineConfig(families={"security": FamilyConfig(enabled=False)})
        registry = PolicyRegistry(PriorityClassifier(config))
        registry.register("dangerous-patterns", lambda e: None)
        registry.register("creates", lambda e: None, kinds=[OperationKind.CREATE])
        registry.register("any", lambda e: None)

        modify = Event(operation_kind=OperationKind.MODIFY, target_path="a.py")
        assert [e.id for e in registry.applicable(modify)] == ["any"]

        create = Event(operation_kind=OperationKind.CREATE, target_path="a.py")
        assert [e.id for e in registry.applicable(create)] == ["creates", "any"]
