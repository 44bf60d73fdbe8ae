"""
Policy layer for HookGuard.

- Static classification of policies into tiers and families
- Explicit registration of policy callables
- A fail-open runner that sandboxes each policy call
- A small built-in policy set

Policies are plain callables; everything here is deterministic.
"""

from hookguard.policy.builtin import register_builtin_policies, validate_patch
from hookguard.policy.priority import PriorityClassifier
from hookguard.policy.registry import PolicyRegistry, RegisteredPolicy
from hookguard.policy.rules import FAMILY_RULES, POLICY_RULES, PolicyRule
from hookguard.policy.runner import PolicyRunner

__all__ = [
    "register_builtin_policies",
    "validate_patch",
    "PriorityClassifier",
    "PolicyRegistry",
    "RegisteredPolicy",
    "FAMILY_RULES",
    "POLICY_RULES",
    "PolicyRule",
    "PolicyRunner",
]
