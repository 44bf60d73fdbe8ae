"""
Static Classification Tables for HookGuard.

These tables decide where a policy runs and how much weight its verdict
carries:
- Tier defaults (timeout, parallelism)
- Family defaults (tier, blocking behavior)
- Known built-in policies
"""

from dataclasses import dataclass

from hookguard.models import BlockingBehavior, Tier


# Unknown policies land here
DEFAULT_TIER = Tier.MEDIUM
DEFAULT_BLOCKING = BlockingBehavior.WARNING
DEFAULT_TIMEOUT_MS = 3000

TIER_TIMEOUTS_MS = {
    Tier.CRITICAL: 2000,
    Tier.HIGH: 4000,
    Tier.MEDIUM: 3000,
    Tier.LOW: 2000,
    Tier.BACKGROUND: 5000,
}

TIER_PARALLELISM = {
    Tier.CRITICAL: 1,
    Tier.HIGH: 3,
    Tier.MEDIUM: 5,
    Tier.LOW: 10,
    Tier.BACKGROUND: 10,
}

EXECUTION_STRATEGIES = {
    Tier.CRITICAL: "sequential",
    Tier.HIGH: "parallel",
    Tier.MEDIUM: "parallel",
    Tier.LOW: "parallel",
    Tier.BACKGROUND: "async",
}


@dataclass(frozen=True)
class FamilyRule:
    tier: Tier
    blocking_behavior: BlockingBehavior
    description: str = ""


FAMILY_RULES = {
    "file_hygiene": FamilyRule(
        Tier.CRITICAL, BlockingBehavior.HARD_BLOCK, "Prevents file system pollution"
    ),
    "infrastructure_protection": FamilyRule(
        Tier.CRITICAL, BlockingBehavior.HARD_BLOCK, "Protects project infrastructure"
    ),
    "security": FamilyRule(
        Tier.HIGH, BlockingBehavior.SOFT_BLOCK, "Security and vulnerability scanning"
    ),
    "validation": FamilyRule(
        Tier.HIGH, BlockingBehavior.SOFT_BLOCK, "Data and change validation"
    ),
    "architecture": FamilyRule(
        Tier.HIGH, BlockingBehavior.SOFT_BLOCK, "Architectural pattern enforcement"
    ),
    "pattern_enforcement": FamilyRule(
        Tier.MEDIUM, BlockingBehavior.WARNING, "Development pattern enforcement"
    ),
    "performance": FamilyRule(
        Tier.MEDIUM, BlockingBehavior.WARNING, "Performance monitoring"
    ),
    "testing": FamilyRule(
        Tier.MEDIUM, BlockingBehavior.WARNING, "Test-related validations"
    ),
    "data_hygiene": FamilyRule(
        Tier.MEDIUM, BlockingBehavior.WARNING, "Data structure validation"
    ),
    "workflow": FamilyRule(
        Tier.MEDIUM, BlockingBehavior.WARNING, "Session and change-size hints"
    ),
    "code_cleanup": FamilyRule(
        Tier.LOW, BlockingBehavior.NONE, "Code cleanup and formatting"
    ),
    "documentation": FamilyRule(
        Tier.LOW, BlockingBehavior.NONE, "Documentation enforcement"
    ),
    "analytics": FamilyRule(
        Tier.BACKGROUND, BlockingBehavior.NONE, "Session bookkeeping"
    ),
}


@dataclass(frozen=True)
class PolicyRule:
    tier: Tier
    family: str
    timeout_ms: int


# Built-in policy classifications (see hookguard.policy.builtin)
POLICY_RULES = {
    "duplicate-naming": PolicyRule(Tier.CRITICAL, "file_hygiene", 1000),
    "protected-paths": PolicyRule(Tier.CRITICAL, "infrastructure_protection", 2000),
    "dangerous-patterns": PolicyRule(Tier.HIGH, "security", 4000),
    "patch-guard": PolicyRule(Tier.HIGH, "validation", 4000),
    "test-bypass": PolicyRule(Tier.MEDIUM, "testing", 3000),
    "change-velocity": PolicyRule(Tier.MEDIUM, "workflow", 2000),
    "trailing-whitespace": PolicyRule(Tier.LOW, "code_cleanup", 2000),
    "session-tracker": PolicyRule(Tier.BACKGROUND, "analytics", 5000),
}


# Paths no automated actor should touch
PROTECTED_PATHS = (
    ".github/",
    ".gitlab-ci",
    "Jenkinsfile",
    ".circleci/",
    "azure-pipelines",
    ".hookguard/",
    ".git/",
)

# Name suffixes that signal a duplicate of an existing file
DUPLICATE_SUFFIXES = (
    "_improved",
    "_enhanced",
    "_v2",
    "_backup",
    "_old",
    "_copy",
)

# Patterns that indicate test bypass attempts
TEST_BYPASS_PATTERNS = (
    "pytest.skip",
    "@pytest.mark.skip",
    "@pytest.mark.xfail",
    "skipIf",
    "skipUnless",
    "unittest.skip",
    "it.skip(",
    "describe.skip(",
)

# Patterns that indicate dangerous code
DANGEROUS_PATTERNS = (
    "os.system",
    "subprocess.call",
    "eval(",
    "exec(",
    "__import__",
    "shutil.rmtree",
    "rm -rf /",
)


@dataclass
class PatchLimits:
    """Size limits for unified-diff payloads."""

    max_files_changed: int = 5
    max_lines_changed: int = 150
    max_hunks_per_file: int = 10
    allow_file_deletion: bool = False


DEFAULT_PATCH_LIMITS = PatchLimits()

# change-velocity thresholds
MAX_RECENT_FILES = 15
RECENT_WINDOW_MINUTES = 30
