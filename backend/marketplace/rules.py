"""
Routing rule evaluation.

A rule is a condition (``field_path`` / ``operator`` / ``value``) plus an
action. Conditions are evaluated against a plain-dict routing context:

    {order_id, address{...}, service_level, items[...], item_count,
     total_quantity, vendor_ids[...]}

Dot paths walk dicts; stepping through a list collects the field from
every element, so ``items.vendor_id`` yields one value per line item.
With several values, positive operators match if any value matches and
``not_equals`` / ``not_in`` only match if every value satisfies them.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from db.models import RoutingRule

logger = structlog.get_logger()

_MISSING = object()

POSITIVE_OPERATORS = {"equals", "contains", "greater_than", "less_than", "in"}
NEGATIVE_OPERATORS = {"not_equals", "not_in"}

# Carrier transit days per service level.
TRANSIT_DAYS = {"standard": 3, "express": 2, "overnight": 1}


def _walk(node: Any, parts: list[str]) -> list:
    if not parts:
        if isinstance(node, (list, tuple)):
            values = []
            for element in node:
                values.extend(_walk(element, []))
            return values
        return [node]

    if isinstance(node, (list, tuple)):
        values = []
        for element in node:
            values.extend(_walk(element, parts))
        return values

    if isinstance(node, dict):
        child = node.get(parts[0], _MISSING)
    else:
        child = getattr(node, parts[0], _MISSING)
    if child is _MISSING or child is None:
        return []
    return _walk(child, parts[1:])


def resolve_path(context: dict, field_path: str) -> list:
    """Every value found at ``field_path``; empty when the path is absent."""
    parts = [p for p in field_path.split(".") if p]
    if not parts:
        return []
    return _walk(context, parts)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    a, e = _as_number(actual), _as_number(expected)
    if a is not None and e is not None:
        return a == e
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.casefold() == expected.casefold()
    return False


def _as_collection(expected: Any) -> list:
    if isinstance(expected, (list, tuple, set)):
        return list(expected)
    return [expected]


def _check(operator: str, actual: Any, expected: Any) -> bool:
    if operator in ("equals", "not_equals"):
        return _equals(actual, expected)
    if operator == "contains":
        if isinstance(actual, str) and isinstance(expected, str):
            return expected.casefold() in actual.casefold()
        return _equals(actual, expected)
    if operator in ("greater_than", "less_than"):
        a, e = _as_number(actual), _as_number(expected)
        if a is None or e is None:
            return False
        return a > e if operator == "greater_than" else a < e
    if operator in ("in", "not_in"):
        return any(_equals(actual, candidate) for candidate in _as_collection(expected))
    raise ValueError(f"Unsupported rule operator '{operator}'")


def evaluate_condition(operator: str, values: list, expected: Any) -> bool:
    if operator in POSITIVE_OPERATORS:
        return any(_check(operator, v, expected) for v in values)
    if operator in NEGATIVE_OPERATORS:
        return all(not _check(operator, v, expected) for v in values)
    raise ValueError(f"Unsupported rule operator '{operator}'")


def rule_is_current(rule: RoutingRule, at: datetime) -> bool:
    if rule.active is False:
        return False
    if rule.valid_from is not None and rule.valid_from > at:
        return False
    if rule.valid_until is not None and rule.valid_until < at:
        return False
    return True


def rule_matches(rule: RoutingRule, context: dict) -> bool:
    return evaluate_condition(rule.operator, resolve_path(context, rule.field_path), rule.value)


@dataclass
class RuleEffects:
    """Accumulated outcome of every matching rule, in priority order."""

    required_codes: set[str] | None = None  # None = no restriction
    excluded: dict[str, str] = field(default_factory=dict)  # code -> rule name
    boosts: dict[str, float] = field(default_factory=dict)
    surcharges: list[tuple[frozenset[str] | None, int]] = field(default_factory=list)
    service_level: str | None = None
    applied: list[str] = field(default_factory=list)

    def allows(self, code: str) -> bool:
        if code in self.excluded:
            return False
        return self.required_codes is None or code in self.required_codes

    def boost_for(self, code: str) -> float:
        return self.boosts.get(code, 0.0)

    def surcharge_for(self, code: str) -> int:
        return sum(cents for scope, cents in self.surcharges if scope is None or code in scope)


def _codes(params: dict) -> set[str]:
    return {str(c) for c in params.get("location_codes") or []}


def apply_rules(
    rules: Iterable[RoutingRule],
    context: dict,
    at: datetime,
    default_boost: float = 10.0,
) -> RuleEffects:
    """Evaluate current rules by priority (highest first) and fold their actions."""
    effects = RuleEffects()
    ordered = sorted((r for r in rules if rule_is_current(r, at)), key=lambda r: -(r.priority or 0))

    for rule in ordered:
        if not rule_matches(rule, context):
            continue

        params = rule.action_params or {}
        if rule.action == "require_location":
            codes = _codes(params)
            effects.required_codes = codes if effects.required_codes is None else effects.required_codes & codes
        elif rule.action == "exclude_location":
            for code in _codes(params):
                effects.excluded.setdefault(code, rule.name)
        elif rule.action == "prefer_location":
            boost = float(params.get("boost", default_boost))
            for code in _codes(params):
                effects.boosts[code] = effects.boosts.get(code, 0.0) + boost
        elif rule.action == "apply_surcharge":
            scope = frozenset(_codes(params)) or None
            effects.surcharges.append((scope, int(params.get("amount_cents", 0))))
        elif rule.action == "require_shipping_method":
            # First (highest-priority) match wins.
            level = params.get("service_level")
            if level not in TRANSIT_DAYS:
                raise ValueError(f"Unsupported service level '{level}' in rule '{rule.name}'")
            if effects.service_level is None:
                effects.service_level = level
        else:
            raise ValueError(f"Unsupported rule action '{rule.action}'")

        effects.applied.append(rule.name)
        logger.info("routing.rule_applied", rule=rule.name, action=rule.action, priority=rule.priority)

    return effects
