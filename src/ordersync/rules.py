"""
Shipping method classification.

A rule reads one field of a remote shipping line and, when it matches, names
the local shipping method to use. Rules are configured as a list of dicts:

    {"shipping_method": "ups_ground",        # target value
     "field": "shipping_method",             # or "shipping_description"
     "operator": "=~",                       # "=", "!=" or "=~"
     "pattern": "flat.*"}

The first rule that matches any line wins.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .errors import RuleError
from .records import ShippingLine

lgr = logging.getLogger(__name__)

UNKNOWN = "unknown"

FIELD_SELECTORS = {
    "shipping_method": lambda line: line.method,
    "shipping_description": lambda line: line.description,
}

QUOTES = "\"'"


def field_value(line: ShippingLine, selector: str) -> str:
    getter = FIELD_SELECTORS.get(selector)
    if getter is None:
        return ""
    return getter(line) or ""


class ShippingRule:
    """Base class of the rule variants, one subclass per operator."""

    operator = None

    def __init__(self, target: str, field: str, pattern: str):
        self.target = target
        self.field = field
        self.pattern = pattern

    def __repr__(self):
        return f"<{self.__class__.__name__}({self.field} {self.operator} {self.pattern!r} -> {self.target})>"

    @staticmethod
    def parse(raw) -> "ShippingRule":
        """Build the rule variant for ``raw``; every field must be non-empty."""
        if isinstance(raw, ShippingRule):
            return raw
        if not isinstance(raw, Mapping):
            raise RuleError("invalid rule")

        target = raw.get("shipping_method")
        selector = raw.get("field")
        operator = raw.get("operator")
        pattern = raw.get("pattern")
        if not target or not selector or not operator or not pattern:
            raise RuleError("invalid rule")

        rule_class = RULE_TYPES.get(operator)
        if rule_class is None:
            raise RuleError("invalid rule")
        return rule_class(str(target), str(selector), str(pattern))

    def applies_to(self, line: ShippingLine) -> bool:
        return self.matches(field_value(line, self.field))

    def matches(self, value: str) -> bool:
        raise NotImplementedError


class EqualsRule(ShippingRule):
    operator = "="

    def matches(self, value: str) -> bool:
        return value == self.pattern.strip(QUOTES)


class NotEqualsRule(ShippingRule):
    operator = "!="

    def matches(self, value: str) -> bool:
        return value != self.pattern.strip(QUOTES)


class RegexMatchRule(ShippingRule):
    operator = "=~"

    def __init__(self, target: str, field: str, pattern: str):
        super().__init__(target, field, pattern)
        self._compiled = None

    def compile_pattern(self):
        if self._compiled is None:
            try:
                self._compiled = re.compile(self.pattern, re.IGNORECASE)
            except re.error as e:
                raise RuleError("invalid pattern") from e
        return self._compiled

    def matches(self, value: str) -> bool:
        return self.compile_pattern().fullmatch(value) is not None


RULE_TYPES = {
    EqualsRule.operator: EqualsRule,
    NotEqualsRule.operator: NotEqualsRule,
    RegexMatchRule.operator: RegexMatchRule,
}


def classify(
    candidate_lines: Sequence[ShippingLine],
    rules: Iterable[Any],
    default_value: Optional[str] = None,
) -> str:
    """
    Pick the local shipping method for a set of remote shipping lines.

    Args:
        candidate_lines: Shipping lines of the remote order
        rules: Rule dicts or ShippingRule instances, evaluated in order
        default_value: Used when no rule matches and the first line has no method

    Returns:
        The target of the first matching rule, otherwise the fallback.

    Raises:
        RuleError: a rule is incomplete, a pattern does not compile, or no
                   rule matched and there is no fallback
    """
    lines = list(candidate_lines) or [ShippingLine(UNKNOWN, UNKNOWN)]
    rules = list(rules)
    fallback = lines[0].method or default_value

    for line in lines:
        for raw in rules:
            rule = ShippingRule.parse(raw)
            if rule.applies_to(line):
                lgr.debug(f"Shipping line {line} matched {rule}")
                return rule.target

    if fallback:
        return fallback
    raise RuleError("cannot classify")


def parse_rules(raw_rules: Iterable[Any]) -> List[ShippingRule]:
    """Parse all rules up front, e.g. to validate configuration."""
    parsed = [ShippingRule.parse(raw) for raw in raw_rules]
    for rule in parsed:
        if isinstance(rule, RegexMatchRule):
            rule.compile_pattern()
    return parsed
