"""
Configuration for HookGuard.

A JSON document describes families, policy overrides and the storage
subsystems. Environment flags are layered on top, read once at load time:

    HOOK_<FAMILY>=false      disable a family (HOOK_SECURITY=false)
    HOOKS_TESTING_MODE=true  bypass the engine entirely
    HOOK_DEVELOPMENT=true    bypass the engine entirely
    HOOK_VERBOSE=true        verbose diagnostics

Malformed sections fall back to defaults; loading never raises.
"""

import hashlib
import json
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Mapping, Optional

from rich.console import Console

from hookguard.models import BlockingBehavior, Tier
from hookguard.policy.rules import FAMILY_RULES, TIER_PARALLELISM

console = Console(stderr=True)

DEFAULT_CONFIG_PATH = ".hookguard/config.json"
CONFIG_ENV_VAR = "HOOKGUARD_CONFIG"


@dataclass
class FamilyConfig:
    enabled: bool = True
    timeout_ms: Optional[int] = None
    blocking_behavior: Optional[BlockingBehavior] = None


@dataclass
class PolicyOverride:
    tier: Optional[Tier] = None
    family: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass
class CacheConfig:
    enabled: bool = True
    directory: str = ".hookguard/cache"
    max_age_seconds: int = 300


@dataclass
class BackupConfig:
    enabled: bool = True
    directory: str = ".hookguard/backups"
    retention_days: int = 7


@dataclass
class AnalyticsConfig:
    enabled: bool = True
    path: str = ".hookguard/analytics.jsonl"
    queue_size: int = 256
    retention_days: int = 30
    max_records: int = 5000


@dataclass
class StateConfig:
    path: str = ".hookguard/state.json"
    max_file_changes: int = 100
    retention_minutes: int = 1440


@dataclass
class ExecutionConfig:
    parallelism: dict = field(default_factory=lambda: dict(TIER_PARALLELISM))
    global_budget_ms: int = 300
    fallback_to_sequential: bool = True


@dataclass
class EngineConfig:
    """Effective configuration for one process."""

    families: dict = field(default_factory=dict)
    policies: dict = field(default_factory=dict)
    cache: CacheConfig = field(default_factory=CacheConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    state: StateConfig = field(default_factory=StateConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    auto_fix: bool = False
    verbose: bool = False

    # Set when HOOKS_TESTING_MODE / HOOK_DEVELOPMENT is active
    bypass_reason: Optional[str] = None

    def family(self, name: str) -> FamilyConfig:
        return self.families.get(name) or FamilyConfig()

    def family_enabled(self, name: str) -> bool:
        return self.family(name).enabled

    def parallelism(self, tier: Tier) -> int:
        value = self.execution.parallelism.get(tier, TIER_PARALLELISM[tier])
        return max(1, int(value))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["execution"]["parallelism"] = {
            _key(tier): n for tier, n in self.execution.parallelism.items()
        }
        return json.loads(json.dumps(data, default=_json_default, sort_keys=True))

    def config_hash(self) -> str:
        """Stable hash of everything that can change a policy verdict."""
        data = self.to_dict()
        # Output-only knobs do not affect verdicts
        for key in ("verbose", "bypass_reason"):
            data.pop(key, None)
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _key(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _json_default(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Not serializable: {value!r}")


def _env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    raw = environ.get(name)
    if raw is None:
        return None
    return raw.strip().lower() == "true"


def family_env_var(family: str) -> str:
    return "HOOK_" + family.upper().replace("-", "_")


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return value


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean, got {value!r}")
    return value


def _parse_family(name: str, raw: Any) -> FamilyConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"family '{name}' must be an object")
    cfg = FamilyConfig()
    if "enabled" in raw:
        cfg.enabled = _bool(raw["enabled"], f"{name}.enabled")
    if raw.get("timeout_ms") is not None:
        cfg.timeout_ms = _positive_int(raw["timeout_ms"], f"{name}.timeout_ms")
    if raw.get("blocking_behavior") is not None:
        cfg.blocking_behavior = BlockingBehavior(raw["blocking_behavior"])
    return cfg


def _parse_policy(policy_id: str, raw: Any) -> PolicyOverride:
    if not isinstance(raw, dict):
        raise ValueError(f"policy '{policy_id}' must be an object")
    override = PolicyOverride()
    if raw.get("tier") is not None:
        override.tier = Tier(raw["tier"])
    if raw.get("family") is not None:
        override.family = str(raw["family"])
    if raw.get("timeout_ms") is not None:
        override.timeout_ms = _positive_int(raw["timeout_ms"], f"{policy_id}.timeout_ms")
    return override


def _parse_section(cls, raw: Any, section: str):
    """Build a flat dataclass section, falling back to defaults on bad input."""
    default = cls()
    if raw is None:
        return default
    try:
        if not isinstance(raw, dict):
            raise ValueError(f"section must be an object, got {type(raw).__name__}")
        values = {}
        for key, current in asdict(default).items():
            if key not in raw:
                continue
            value = raw[key]
            if isinstance(current, bool):
                value = _bool(value, f"{section}.{key}")
            elif isinstance(current, int):
                value = _positive_int(value, f"{section}.{key}")
            elif isinstance(current, str):
                if not isinstance(value, str) or not value:
                    raise ValueError(f"{section}.{key} must be a non-empty string")
            values[key] = value
        return cls(**values)
    except (TypeError, ValueError) as e:
        console.print(f"[yellow]⚠ Invalid '{section}' config, using defaults: {e}[/yellow]")
        return default


def _parse_execution(raw: Any) -> ExecutionConfig:
    default = ExecutionConfig()
    if raw is None:
        return default
    try:
        if not isinstance(raw, dict):
            raise ValueError("section must be an object")
        cfg = ExecutionConfig()
        for tier_name, value in (raw.get("parallelism") or {}).items():
            cfg.parallelism[Tier(tier_name)] = _positive_int(value, f"parallelism.{tier_name}")
        if "global_budget_ms" in raw:
            cfg.global_budget_ms = _positive_int(raw["global_budget_ms"], "global_budget_ms")
        if "fallback_to_sequential" in raw:
            cfg.fallback_to_sequential = _bool(raw["fallback_to_sequential"], "fallback_to_sequential")
        return cfg
    except (AttributeError, TypeError, ValueError) as e:
        console.print(f"[yellow]⚠ Invalid 'execution' config, using defaults: {e}[/yellow]")
        return default


def parse_config(
    data: Any,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Build an EngineConfig from a decoded JSON document.

    Args:
        data: Decoded document (anything; non-dicts mean "all defaults")
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Effective configuration with environment flags applied
    """
    if environ is None:
        environ = os.environ

    if not isinstance(data, dict):
        if data is not None:
            console.print("[yellow]⚠ Config document is not an object, using defaults[/yellow]")
        data = {}

    config = EngineConfig()

    families = data.get("families") or {}
    if isinstance(families, dict):
        for name, raw in families.items():
            try:
                config.families[name] = _parse_family(name, raw)
            except (TypeError, ValueError) as e:
                console.print(f"[yellow]⚠ Invalid family config '{name}', using defaults: {e}[/yellow]")
    else:
        console.print("[yellow]⚠ 'families' must be an object, ignoring[/yellow]")

    policies = data.get("policies") or {}
    if isinstance(policies, dict):
        for policy_id, raw in policies.items():
            try:
                config.policies[policy_id] = _parse_policy(policy_id, raw)
            except (TypeError, ValueError) as e:
                console.print(f"[yellow]⚠ Invalid policy config '{policy_id}', using defaults: {e}[/yellow]")
    else:
        console.print("[yellow]⚠ 'policies' must be an object, ignoring[/yellow]")

    config.cache = _parse_section(CacheConfig, data.get("cache"), "cache")
    config.backup = _parse_section(BackupConfig, data.get("backup"), "backup")
    config.analytics = _parse_section(AnalyticsConfig, data.get("analytics"), "analytics")
    config.state = _parse_section(StateConfig, data.get("state"), "state")
    config.execution = _parse_execution(data.get("execution"))

    if isinstance(data.get("auto_fix"), bool):
        config.auto_fix = data["auto_fix"]
    if isinstance(data.get("verbose"), bool):
        config.verbose = data["verbose"]

    apply_env(config, environ)
    return config


def apply_env(config: EngineConfig, environ: Mapping[str, str]) -> EngineConfig:
    """Layer environment flags over a parsed config."""
    known = set(FAMILY_RULES) | set(config.families)
    for name in sorted(known):
        flag = _env_flag(environ, family_env_var(name))
        if flag is None:
            continue
        family = config.families.setdefault(name, FamilyConfig())
        family.enabled = flag

    if _env_flag(environ, "HOOKS_TESTING_MODE"):
        config.bypass_reason = "HOOKS_TESTING_MODE=true"
    elif _env_flag(environ, "HOOK_DEVELOPMENT"):
        config.bypass_reason = "HOOK_DEVELOPMENT=true"

    if _env_flag(environ, "HOOK_VERBOSE"):
        config.verbose = True

    return config


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Load configuration from a JSON file.

    A missing file means defaults. An unreadable or malformed file is
    reported and also means defaults.

    Args:
        path: Config file path (HOOKGUARD_CONFIG or the default location otherwise)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Effective configuration
    """
    if environ is None:
        environ = os.environ

    config_path = Path(path or environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

    data = None
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            console.print(f"[yellow]⚠ Could not read config {config_path}: {e}[/yellow]")

    return parse_config(data, environ)
