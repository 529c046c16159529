from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

from qalint.analysis.consistency import CONSISTENCY_RULES
from qalint.analysis.discovery import DEFAULT_EXCLUDE
from qalint.analysis.model import Severity
from qalint.analysis.rules import DEFAULT_RULES, RuleContext, RuleSpec, configure_rules
from qalint.exceptions import InvocationError, RulePolicyError
from qalint.runtime.env_policy import STRICT_ENV, WORKERS_ENV, env_flag, env_positive_int
from qalint.tooling.rule_policy import load_rule_policy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "qalint.toml"
OUTPUT_FORMATS = ("text", "json")
MAX_DEFAULT_WORKERS = 8

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


@dataclass(frozen=True)
class ValidatorConfig:
    fail_on: Severity = Severity.ERROR
    strict: bool = False
    workers: int = 1
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    output_format: str = "text"
    rules: tuple[RuleSpec, ...] = DEFAULT_RULES
    context: RuleContext | None = None
    config_path: Path | None = None
    consistency_severity: Mapping[str, Severity] = field(default_factory=dict)
    consistency_disabled: frozenset[str] = frozenset()


def default_workers() -> int:
    return max(1, min(MAX_DEFAULT_WORKERS, os.cpu_count() or 1))


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _load_required_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvocationError(f"cannot read config file {path}: {exc.strerror or exc}") from exc
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise InvocationError(f"invalid TOML in config file {path}: {exc}") from exc
    return data


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    """Load `qalint.toml`.

    An implicit `qalint.toml` in `root` (default: cwd) is optional and a broken
    one is ignored; an explicit `config_path` must exist and parse.
    """
    if config_path is not None:
        return _load_required_toml(config_path)
    base = root if root is not None else Path.cwd()
    return _load_toml(base / DEFAULT_CONFIG_NAME)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def validation_defaults(data: TomlTable) -> TomlTable:
    return _section(data, "validation")


def rules_defaults(data: TomlTable) -> TomlTable:
    return _section(data, "rules")


def features_defaults(data: TomlTable) -> TomlTable:
    return _section(data, "features")


def heuristics_defaults(data: TomlTable) -> TomlTable:
    return _section(data, "heuristics")


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_positive_int(value: TomlValue, *, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvocationError(f"{field_name} must be a positive integer")
    try:
        parsed = int(value)
    except ValueError as exc:
        raise InvocationError(f"{field_name} must be a positive integer") from exc
    if parsed < 1:
        raise InvocationError(f"{field_name} must be a positive integer")
    return parsed


def _as_severity(value: TomlValue, *, field_name: str) -> Severity:
    try:
        return Severity.parse(value)
    except ValueError as exc:
        raise InvocationError(f"{field_name}: {exc}") from exc


def severity_override_map(section: TomlTable | None) -> dict[str, Severity]:
    if not isinstance(section, dict):
        return {}
    raw = section.get("severity", {})
    if not isinstance(raw, dict):
        raise InvocationError("[rules.severity] must be a table of rule id = level")
    return {
        str(rule_id): _as_severity(value, field_name=f"rules.severity.{rule_id}")
        for rule_id, value in raw.items()
    }


def feature_code_map(section: TomlTable | None) -> dict[str, str]:
    if not isinstance(section, dict):
        return {}
    codes: dict[str, str] = {}
    for feature, code in section.items():
        if not isinstance(code, str) or not code.strip():
            raise InvocationError(f"features.{feature} must be a non-empty string")
        codes[str(feature)] = code.strip()
    return codes


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def env_overrides() -> TomlTable:
    return {
        "workers": env_positive_int(WORKERS_ENV),
        "strict": env_flag(STRICT_ENV),
    }


def normalize_output_format(value: object) -> str:
    output_format = str(value).strip().lower()
    if output_format not in OUTPUT_FORMATS:
        raise InvocationError(
            f"unknown output format {output_format!r}; expected one of: {', '.join(OUTPUT_FORMATS)}"
        )
    return output_format


def resolve_config(
    *,
    root: Path | None = None,
    config_path: Path | None = None,
    overrides: TomlTable | None = None,
) -> ValidatorConfig:
    """Build the effective configuration.

    Precedence: CLI `overrides`, then environment, then `[validation]` in
    `qalint.toml`, then built-in defaults. Rule severities, disabled rules and
    heuristics combine the YAML rule policy with the `[rules]` and
    `[heuristics]` tables, the TOML file winning.
    """
    data = load_config(root=root, config_path=config_path)
    if data:
        logger.debug("loaded configuration from %s", config_path or DEFAULT_CONFIG_NAME)
    validation = merge_payload(env_overrides(), validation_defaults(data))
    validation = merge_payload(overrides or {}, validation)

    output_format = normalize_output_format(validation.get("format", "text"))
    workers_raw = validation.get("workers")
    workers = (
        default_workers()
        if workers_raw is None
        else _as_positive_int(workers_raw, field_name="workers")
    )
    exclude = tuple(_normalize_name_list(validation.get("exclude"))) or DEFAULT_EXCLUDE

    rule_policy_path = data.get("rule_policy")
    policy_path: Path | None = None
    if isinstance(rule_policy_path, str) and rule_policy_path.strip():
        policy_path = Path(rule_policy_path)
        if not policy_path.is_absolute():
            anchor = config_path.parent if config_path is not None else (root or Path.cwd())
            policy_path = anchor / policy_path
    rules_section = rules_defaults(data)
    heuristics = heuristics_defaults(data)
    feature_codes = feature_code_map(features_defaults(data))
    try:
        policy = load_rule_policy(policy_path)
        role_keywords = heuristics.get("role_keywords")
        role_threshold = heuristics.get("role_threshold")
        policy = policy.with_heuristics(
            role_keywords=(
                _normalize_name_list(role_keywords) if role_keywords is not None else None
            ),
            role_threshold=role_threshold,
        )
    except RulePolicyError as exc:
        raise InvocationError(str(exc)) from exc
    severity_overrides = {
        **policy.severity_overrides,
        **severity_override_map(rules_section),
    }
    disabled = {
        *policy.disabled_rules,
        *_normalize_name_list(rules_section.get("disable")),
    }
    consistency_ids = {rule_id for rule_id, _, _ in CONSISTENCY_RULES}
    consistency_severity = {
        rule_id: severity
        for rule_id, severity in severity_overrides.items()
        if rule_id in consistency_ids
    }
    consistency_disabled = frozenset(disabled & consistency_ids)
    try:
        rules = configure_rules(
            DEFAULT_RULES,
            severity_overrides={
                rule_id: severity
                for rule_id, severity in severity_overrides.items()
                if rule_id not in consistency_ids
            },
            disabled=sorted(disabled - consistency_ids),
        )
    except ValueError as exc:
        raise InvocationError(str(exc)) from exc

    return ValidatorConfig(
        fail_on=_as_severity(validation.get("fail_on", "error"), field_name="fail_on"),
        strict=_as_bool(validation.get("strict", False)),
        workers=workers,
        exclude=exclude,
        output_format=output_format,
        rules=rules,
        context=RuleContext(policy=policy, feature_codes=feature_codes),
        config_path=config_path,
        consistency_severity=consistency_severity,
        consistency_disabled=consistency_disabled,
    )
