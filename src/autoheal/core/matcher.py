"""Evaluation of healing rule conditions against alerts."""

from __future__ import annotations

import re
from functools import lru_cache

from loguru import logger

from autoheal.errors import RuleMatchError
from autoheal.models import Alert, HealingRule


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def check_map(rule_name: str, values: dict[str, str], patterns: dict[str, str]) -> bool:
    """Check that every pattern matches the value with the same key.

    Keys present in the values but not in the patterns are ignored. Patterns
    match anywhere inside the value, like ``re.search``.

    Raises:
        RuleMatchError: If one of the patterns isn't a valid regular expression.
    """
    for key, pattern in patterns.items():
        value = values.get(key)
        if value is None:
            return False
        try:
            regex = _compile(pattern)
        except re.error as e:
            raise RuleMatchError(rule_name, key, pattern, e) from e
        if regex.search(value) is None:
            return False
    return True


def matches(rule: HealingRule, alert: Alert) -> bool:
    """Check if a rule is activated by an alert.

    A rule without label and annotation conditions matches every alert.

    Raises:
        RuleMatchError: If the rule contains an invalid pattern.
    """
    logger.debug(f"Checking rule '{rule.name}' for alert '{alert.name}'")
    if not check_map(rule.name, alert.labels, rule.labels):
        return False
    return check_map(rule.name, alert.annotations, rule.annotations)
