"""Dispatch of healing actions for incoming alerts.

For each firing alert the dispatcher finds the rules that match it, expands the
templates of their actions with the alert data, and hands the result to the
runner of the action type, unless the same action was executed recently.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from autoheal.core.matcher import matches
from autoheal.core.templates import ObjectTemplate
from autoheal.errors import ActionError, RuleMatchError, TemplateExpansionError
from autoheal.metrics import MetricsSink, NullMetrics
from autoheal.models import Action, Alert, AlertStatus, HealingRule, action_type

if TYPE_CHECKING:
    from autoheal.core.memory import ShortTermMemory
    from autoheal.core.rules import RuleStore
    from autoheal.runners.base import ActionRunner


class RuleOutcome(str, Enum):
    """What happened when an activated rule was run."""

    NO_ACTION = "no_action"
    EXPANSION_ERROR = "expansion_error"
    THROTTLED = "throttled"
    DISPATCHED = "dispatched"
    DISPATCH_ERROR = "dispatch_error"


class Dispatcher:
    """Matches alerts against rules and executes the resulting actions."""

    def __init__(
        self,
        rules: "RuleStore",
        memory: "ShortTermMemory",
        runners: dict[type, "ActionRunner"],
        metrics: MetricsSink | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            rules: Store with the current healing rules.
            memory: Memory of recently executed actions.
            runners: Map of action class to the runner that executes it.
            metrics: Metrics sink.
        """
        self._rules = rules
        self._memory = memory
        self._runners = runners
        self._metrics = metrics or NullMetrics()
        self._templates: dict[tuple[str, str] | None, ObjectTemplate] = {}

    async def process_alert(self, alert: Alert) -> list[tuple[str, RuleOutcome]]:
        """Process an alert according to its status."""
        if alert.status == AlertStatus.FIRING:
            return await self.start_healing(alert)
        if alert.status == AlertStatus.RESOLVED:
            self.cancel_healing(alert)
            return []
        logger.warning(
            f"Unknown status '{alert.status}' reported by alert manager for alert "
            f"'{alert.name}', will ignore it"
        )
        return []

    async def start_healing(self, alert: Alert) -> list[tuple[str, RuleOutcome]]:
        """Run all the rules activated by the alert.

        Returns:
            List of (rule name, outcome) for the activated rules.
        """
        activated = self.find_rules(alert)
        if not activated:
            logger.info(f"No rule matches alert '{alert.name}'")
            return []

        outcomes = []
        for rule in activated:
            outcome = await self.run_rule(rule, alert)
            outcomes.append((rule.name, outcome))
        return outcomes

    def cancel_healing(self, alert: Alert) -> None:
        """Handle a resolved alert.

        Running actions aren't cancelled yet, resolved alerts are only logged.
        """
        logger.debug(f"Alert '{alert.name}' is resolved, nothing to cancel")

    def find_rules(self, alert: Alert) -> list[HealingRule]:
        """Find the rules activated by the alert.

        Rules with invalid patterns are logged and skipped.
        """
        activated = []
        for rule in self._rules.snapshot():
            try:
                matched = matches(rule, alert)
            except RuleMatchError as e:
                logger.error(
                    f"Error while checking if rule '{rule.name}' matches alert '{alert.name}': {e}"
                )
                continue
            if matched:
                logger.info(f"Rule '{rule.name}' matches alert '{alert.name}'")
                activated.append(rule)
        return activated

    def expand_action(self, rule: HealingRule, alert: Alert) -> Action | None:
        """Copy the action of the rule and expand its templates.

        The rule itself is never modified.

        Raises:
            TemplateExpansionError: If a template of the action is invalid.
        """
        action = rule.action
        if action is None:
            return None
        action = action.model_copy(deep=True)
        self._template(rule.delimiters).process(action, alert)
        return action

    async def run_rule(self, rule: HealingRule, alert: Alert) -> RuleOutcome:
        """Execute the action of an activated rule."""
        logger.info(f"Running rule '{rule.name}' for alert '{alert.name}'")

        try:
            action = self.expand_action(rule, alert)
        except TemplateExpansionError as e:
            logger.error(f"Can't process templates of rule '{rule.name}': {e}")
            return RuleOutcome.EXPANSION_ERROR
        if action is None:
            logger.warning(
                f"There are no action details, rule '{rule.name}' will have no effect "
                f"on alert '{alert.name}'"
            )
            return RuleOutcome.NO_ACTION

        kind = action_type(action)

        # Requests are counted even when the action ends up throttled.
        self._metrics.action_requested(kind, rule.name, alert.name)

        if self._memory.has(action):
            logger.info(
                f"Action for rule '{rule.name}' and alert '{alert.name}' has been executed "
                f"recently, it will be ignored"
            )
            return RuleOutcome.THROTTLED

        outcome = RuleOutcome.DISPATCHED
        try:
            runner = self._runners.get(type(action))
            if runner is None:
                raise ActionError(f"Don't know how to execute action of type '{kind}'")
            await runner.run_action(rule, action, alert)
        except Exception as e:
            logger.error(f"Action of rule '{rule.name}' for alert '{alert.name}' failed: {e}")
            outcome = RuleOutcome.DISPATCH_ERROR
        finally:
            # Failed actions are remembered too, so that they aren't retried in a loop.
            self._memory.add(action)

        self._metrics.action_dispatched(kind, rule.name, outcome == RuleOutcome.DISPATCHED)
        return outcome

    def _template(self, delimiters: tuple[str, str] | None) -> ObjectTemplate:
        template = self._templates.get(delimiters)
        if template is None:
            template = ObjectTemplate(delimiters=delimiters)
            self._templates[delimiters] = template
        return template
