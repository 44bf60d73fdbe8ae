"""
Priority Classifier for HookGuard.

Maps a policy id to its descriptor (tier, family, timeout, blocking
behavior). The lookup table is built once; classify() is a dict hit.
"""

from typing import TYPE_CHECKING, Optional

from hookguard.models import BlockingBehavior, PolicyDescriptor, Tier
from hookguard.policy.rules import (
    DEFAULT_BLOCKING,
    DEFAULT_TIER,
    DEFAULT_TIMEOUT_MS,
    EXECUTION_STRATEGIES,
    FAMILY_RULES,
    POLICY_RULES,
    TIER_TIMEOUTS_MS,
    PolicyRule,
)

if TYPE_CHECKING:
    from hookguard.config import EngineConfig


class PriorityClassifier:
    """
    Static policy classification.

    Resolution order for each field: config policy override, built-in
    policy table, family default, global default.
    """

    def __init__(self, config: Optional["EngineConfig"] = None):
        if config is None:
            from hookguard.config import EngineConfig
            config = EngineConfig()
        self.config = config
        self._table: dict[str, PolicyDescriptor] = {}

        for policy_id in sorted(set(POLICY_RULES) | set(config.policies)):
            self._table[policy_id] = self._resolve(policy_id)

    def _resolve(self, policy_id: str) -> PolicyDescriptor:
        rule = POLICY_RULES.get(policy_id)
        override = self.config.policies.get(policy_id)

        family = (override and override.family) or (rule and rule.family) or "unknown"
        family_rule = FAMILY_RULES.get(family)
        family_cfg = self.config.family(family)

        tier = (
            (override and override.tier)
            or (rule and rule.tier)
            or (family_rule and family_rule.tier)
            or DEFAULT_TIER
        )

        timeout_ms = (
            (override and override.timeout_ms)
            or family_cfg.timeout_ms
            or (rule and rule.timeout_ms)
            or TIER_TIMEOUTS_MS.get(tier, DEFAULT_TIMEOUT_MS)
        )

        return PolicyDescriptor(
            id=policy_id,
            tier=tier,
            family=family,
            timeout_ms=timeout_ms,
            blocking_behavior=self.get_blocking_behavior(family),
        )

    def classify(self, policy_id: str) -> PolicyDescriptor:
        """Get the descriptor for a policy; unknown ids get safe defaults."""
        descriptor = self._table.get(policy_id)
        if descriptor is None:
            return PolicyDescriptor(
                id=policy_id,
                tier=DEFAULT_TIER,
                family="unknown",
                timeout_ms=DEFAULT_TIMEOUT_MS,
                blocking_behavior=DEFAULT_BLOCKING,
            )
        return descriptor

    def describe(self, policy_id: str, rule: PolicyRule) -> PolicyDescriptor:
        """Register an explicit rule for a policy not in the static table."""
        if policy_id in self._table and policy_id in self.config.policies:
            # Config overrides win over code-level registration
            return self._table[policy_id]
        family_cfg = self.config.family(rule.family)
        descriptor = PolicyDescriptor(
            id=policy_id,
            tier=rule.tier,
            family=rule.family,
            timeout_ms=family_cfg.timeout_ms or rule.timeout_ms,
            blocking_behavior=self.get_blocking_behavior(rule.family),
        )
        self._table[policy_id] = descriptor
        return descriptor

    def get_blocking_behavior(self, family: str) -> BlockingBehavior:
        configured = self.config.family(family).blocking_behavior
        if configured is not None:
            return configured
        rule = FAMILY_RULES.get(family)
        return rule.blocking_behavior if rule else DEFAULT_BLOCKING

    def get_execution_strategy(self, tier: Tier) -> str:
        return EXECUTION_STRATEGIES.get(tier, "parallel")

    def should_stop_on_failure(self, tier: Tier, family: str) -> bool:
        """
        Whether a block in this tier/family aborts all later tiers.

        Critical always stops. High stops only for hard-block families;
        soft-block and warning families stay advisory at high tier.
        """
        if tier is Tier.CRITICAL:
            return True
        if tier is Tier.HIGH and self.get_blocking_behavior(family) is BlockingBehavior.HARD_BLOCK:
            return True
        return False

    def concurrency_limit(self, tier: Tier) -> int:
        return self.config.parallelism(tier)

    def statistics(self) -> dict:
        """Counts by tier and family plus timeout totals."""
        descriptors = list(self._table.values())
        stats = {
            "total": len(descriptors),
            "by_tier": {},
            "by_family": {},
            "total_timeout_ms": 0,
            "average_timeout_ms": 0,
        }

        for d in descriptors:
            stats["by_tier"][d.tier.value] = stats["by_tier"].get(d.tier.value, 0) + 1
            stats["by_family"][d.family] = stats["by_family"].get(d.family, 0) + 1
            stats["total_timeout_ms"] += d.timeout_ms

        if descriptors:
            stats["average_timeout_ms"] = round(stats["total_timeout_ms"] / len(descriptors))

        return stats

    def validate_entry(self, entry: dict) -> dict:
        """
        Validate a policy entry from a config document.

        Returns:
            {"valid": bool, "errors": [...], "warnings": [...]}
        """
        errors = []
        warnings = []

        if not entry.get("id"):
            errors.append("Policy id is required")

        tier = entry.get("tier")
        if not tier:
            warnings.append("Policy tier not specified, defaulting to medium")
        elif tier not in {t.value for t in Tier}:
            errors.append(f"Invalid tier: {tier}")

        family = entry.get("family")
        if not family:
            warnings.append("Policy family not specified, defaulting to unknown")
        elif family not in FAMILY_RULES:
            warnings.append(f"Unknown family: {family}")

        timeout = entry.get("timeout_ms")
        if timeout is not None and timeout < 1000:
            warnings.append("Policy timeout is very low, may cause premature failures")

        return {"valid": not errors, "errors": errors, "warnings": warnings}
