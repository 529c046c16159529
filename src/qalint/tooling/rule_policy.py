from __future__ import annotations

import re
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Sequence

import yaml

from qalint.analysis.model import Mode, Severity
from qalint.exceptions import RulePolicyError

DEFAULT_POLICY_PATH = Path(__file__).resolve().with_name("rule_policy.yaml")


@dataclass(frozen=True)
class RulePolicy:
    mode_markers: Mapping[Mode, tuple[re.Pattern[str], ...]]
    role_keywords: tuple[str, ...]
    role_threshold: int
    severity_overrides: Mapping[str, Severity]
    disabled_rules: tuple[str, ...]

    def markers_for(self, mode: Mode) -> tuple[re.Pattern[str], ...]:
        return tuple(self.mode_markers.get(mode, ()))

    def with_heuristics(
        self,
        *,
        role_keywords: Sequence[str] | None = None,
        role_threshold: int | None = None,
    ) -> "RulePolicy":
        return replace(
            self,
            role_keywords=(
                _keyword_tuple(list(role_keywords), field_name="role_keywords")
                if role_keywords is not None
                else self.role_keywords
            ),
            role_threshold=(
                _positive_int(role_threshold, field_name="role_threshold")
                if role_threshold is not None
                else self.role_threshold
            ),
        )


def _yaml_loader():
    class Loader(yaml.SafeLoader):
        pass

    for key, values in list(Loader.yaml_implicit_resolvers.items()):
        Loader.yaml_implicit_resolvers[key] = [
            (tag, regexp) for tag, regexp in values if tag != "tag:yaml.org,2002:bool"
        ]
    return Loader


def _string_list(raw: object, *, field_name: str) -> list[str]:
    if not isinstance(raw, list) or any(not isinstance(item, str) for item in raw):
        raise RulePolicyError(f"rule_policy invalid {field_name}: expected list[str]")
    return raw


def _keyword_tuple(raw: object, *, field_name: str) -> tuple[str, ...]:
    keywords = {item.strip().lower() for item in _string_list(raw, field_name=field_name)}
    return tuple(sorted(keyword for keyword in keywords if keyword))


def _positive_int(raw: object, *, field_name: str) -> int:
    if isinstance(raw, bool):
        raise RulePolicyError(f"rule_policy invalid {field_name}: expected int")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise RulePolicyError(f"rule_policy invalid {field_name}: expected int") from exc
    if value < 1:
        raise RulePolicyError(f"rule_policy invalid {field_name}: expected a positive int")
    return value


def _compile_markers(raw: object) -> dict[Mode, tuple[re.Pattern[str], ...]]:
    if not isinstance(raw, Mapping):
        raise RulePolicyError("rule_policy must define mode_markers")
    markers: dict[Mode, tuple[re.Pattern[str], ...]] = {}
    for mode in Mode:
        patterns: list[re.Pattern[str]] = []
        for source in _string_list(raw.get(mode.value, []), field_name=f"mode_markers.{mode.value}"):
            try:
                patterns.append(re.compile(source, re.IGNORECASE))
            except re.error as exc:
                raise RulePolicyError(
                    f"rule_policy invalid mode_markers.{mode.value}: {source!r} ({exc})"
                ) from exc
        markers[mode] = tuple(patterns)
    return markers


def _severity_map(raw: object) -> dict[str, Severity]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise RulePolicyError("rule_policy invalid severity: expected a mapping")
    overrides: dict[str, Severity] = {}
    for rule_id, value in raw.items():
        try:
            overrides[str(rule_id)] = Severity.parse(value)
        except ValueError as exc:
            raise RulePolicyError(f"rule_policy invalid severity.{rule_id}: {exc}") from exc
    return overrides


def policy_from_mapping(raw: object) -> RulePolicy:
    if not isinstance(raw, Mapping):
        raise RulePolicyError("rule_policy root must be a mapping")
    return RulePolicy(
        mode_markers=_compile_markers(raw.get("mode_markers")),
        role_keywords=_keyword_tuple(raw.get("role_keywords", []), field_name="role_keywords"),
        role_threshold=_positive_int(raw.get("role_threshold", 3), field_name="role_threshold"),
        severity_overrides=_severity_map(raw.get("severity")),
        disabled_rules=tuple(_string_list(raw.get("disabled", []), field_name="disabled")),
    )


@lru_cache(maxsize=8)
def load_rule_policy(path: Path | None = None) -> RulePolicy:
    policy_path = DEFAULT_POLICY_PATH if path is None else path
    try:
        with policy_path.open("r", encoding="utf-8") as handle:
            raw = yaml.load(handle, Loader=_yaml_loader()) or {}
    except OSError as exc:
        raise RulePolicyError(f"rule_policy unreadable: {policy_path} ({exc.strerror or exc})") from exc
    except yaml.YAMLError as exc:
        raise RulePolicyError(f"rule_policy is not valid YAML: {policy_path}") from exc
    return policy_from_mapping(raw)
