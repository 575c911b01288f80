"""In-memory store of the healing rules currently in effect."""

from __future__ import annotations

from threading import Lock

from loguru import logger

from autoheal.models import ChangeType, HealingRule, RuleChange


class RuleStore:
    """Thread-safe mapping from rule name to rule.

    Readers take a snapshot and iterate it outside the lock, so rule changes
    applied by the rules worker never interfere with alert processing.
    """

    def __init__(self) -> None:
        self._rules: dict[str, HealingRule] = {}
        self._lock = Lock()

    def upsert(self, rule: HealingRule) -> bool:
        """Add a rule, or replace it if its version changed.

        Returns:
            True if the store changed, False if the same version was already stored.
        """
        with self._lock:
            existing = self._rules.get(rule.name)
            if existing is not None and existing.version == rule.version:
                return False
            self._rules[rule.name] = rule

        if existing is None:
            logger.info(f"Rule '{rule.name}' was added")
        else:
            logger.info(f"Rule '{rule.name}' was updated")
        return True

    def delete(self, name: str) -> bool:
        """Remove a rule.

        Returns:
            True if the rule existed.
        """
        with self._lock:
            removed = self._rules.pop(name, None)

        if removed is None:
            return False
        logger.info(f"Rule '{name}' was deleted")
        return True

    def apply(self, change: RuleChange) -> bool:
        """Apply a change event to the store."""
        if change.type in (ChangeType.ADDED, ChangeType.MODIFIED):
            return self.upsert(change.rule)
        if change.type == ChangeType.DELETED:
            return self.delete(change.rule.name)
        logger.warning(f"Unknown rule change type '{change.type}', ignoring it")
        return False

    def get(self, name: str) -> HealingRule | None:
        with self._lock:
            return self._rules.get(name)

    def snapshot(self) -> list[HealingRule]:
        """Point in time copy of the stored rules."""
        with self._lock:
            return list(self._rules.values())

    def names(self) -> set[str]:
        with self._lock:
            return set(self._rules)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._rules
