"""
Policy Registry for HookGuard.

Policies are registered explicitly at startup; there is no filesystem
discovery. Registration order is the tie-breaker for message ordering.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from hookguard.models import Event, OperationKind, PolicyDescriptor, PolicyFunc
from hookguard.policy.priority import PriorityClassifier
from hookguard.policy.rules import PolicyRule


@dataclass(frozen=True)
class RegisteredPolicy:
    descriptor: PolicyDescriptor
    func: PolicyFunc
    order: int
    kinds: Optional[frozenset] = None
    cacheable: bool = True

    @property
    def id(self) -> str:
        return self.descriptor.id

    def applies_to(self, event: Event) -> bool:
        return self.kinds is None or event.operation_kind in self.kinds


class PolicyRegistry:
    """Ordered table of policies bound to their descriptors."""

    def __init__(self, classifier: PriorityClassifier):
        self.classifier = classifier
        self._entries: dict[str, RegisteredPolicy] = {}

    def register(
        self,
        policy_id: str,
        func: PolicyFunc,
        *,
        rule: Optional[PolicyRule] = None,
        kinds: Optional[Iterable[OperationKind]] = None,
        cacheable: bool = True,
    ) -> RegisteredPolicy:
        """
        Register a policy.

        Args:
            policy_id: Unique id
            func: Policy callable
            rule: Explicit tier/family/timeout (classifier table otherwise)
            kinds: Operation kinds this policy applies to (all if None)
            cacheable: Whether verdicts may be memoized

        Returns:
            The registry entry

        Raises:
            ValueError: If the id is already registered
        """
        if policy_id in self._entries:
            raise ValueError(f"Policy already registered: {policy_id}")

        if rule is not None:
            descriptor = self.classifier.describe(policy_id, rule)
        else:
            descriptor = self.classifier.classify(policy_id)

        entry = RegisteredPolicy(
            descriptor=descriptor,
            func=func,
            order=len(self._entries),
            kinds=frozenset(kinds) if kinds is not None else None,
            cacheable=cacheable,
        )
        self._entries[policy_id] = entry
        return entry

    def get(self, policy_id: str) -> Optional[RegisteredPolicy]:
        return self._entries.get(policy_id)

    def applicable(self, event: Event) -> list[RegisteredPolicy]:
        """Enabled policies matching the event, in registration order."""
        config = self.classifier.config
        return [
            entry
            for entry in self._entries.values()
            if config.family_enabled(entry.descriptor.family) and entry.applies_to(event)
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries.values())
