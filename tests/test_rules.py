"""Tests for the rule store and the rule model."""

import pytest
from pydantic import ValidationError

from autoheal.core.rules import RuleStore
from autoheal.models import BatchJobAction, ChangeType, HealingRule, JobAction, RuleChange


class TestRuleStore:
    """Tests for the versioned upsert and delete operations."""

    def test_upsert_adds_rule(self):
        store = RuleStore()
        rule = HealingRule(name="a", version="1")

        assert store.upsert(rule) is True
        assert store.get("a") is rule
        assert "a" in store
        assert len(store) == 1

    def test_upsert_same_version_is_noop(self):
        """Storing the same version again keeps the first object."""
        store = RuleStore()
        first = HealingRule(name="a", version="1")
        second = HealingRule(name="a", version="1", labels={"x": "y"})

        store.upsert(first)
        assert store.upsert(second) is False
        assert store.get("a") is first

    def test_upsert_new_version_replaces(self):
        store = RuleStore()
        store.upsert(HealingRule(name="a", version="1"))
        updated = HealingRule(name="a", version="2", labels={"x": "y"})

        assert store.upsert(updated) is True
        assert store.get("a") is updated
        assert len(store) == 1

    def test_delete(self):
        store = RuleStore()
        store.upsert(HealingRule(name="a", version="1"))

        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    def test_apply_changes(self):
        store = RuleStore()
        rule = HealingRule(name="a", version="1")

        store.apply(RuleChange(type=ChangeType.ADDED, rule=rule))
        assert store.names() == {"a"}

        store.apply(RuleChange(type=ChangeType.DELETED, rule=rule))
        assert store.names() == set()

    def test_snapshot_is_a_copy(self):
        store = RuleStore()
        store.upsert(HealingRule(name="a", version="1"))

        snapshot = store.snapshot()
        store.upsert(HealingRule(name="b", version="1"))

        assert [r.name for r in snapshot] == ["a"]
        assert len(store.snapshot()) == 2


class TestHealingRule:
    """Tests for parsing healing rules from configuration data."""

    def test_camel_case_fields(self):
        rule = HealingRule.model_validate({
            "metadata": {"name": "start-node", "namespace": "ops"},
            "labels": {"alertname": "NodeDown"},
            "awxJob": {"template": "Start node", "extraVars": '{"node": "a"}'},
        })

        assert rule.name == "start-node"
        assert rule.namespace == "ops"
        assert isinstance(rule.action, JobAction)
        assert rule.awx_job.extra_vars == {"node": "a"}

    def test_version_is_derived_from_content(self):
        """Rules without explicit version get one that changes with the content."""
        one = HealingRule.model_validate({"name": "a", "labels": {"x": "1"}})
        same = HealingRule.model_validate({"name": "a", "labels": {"x": "1"}})
        other = HealingRule.model_validate({"name": "a", "labels": {"x": "2"}})

        assert one.version
        assert one.version == same.version
        assert one.version != other.version

    def test_batch_job_manifest(self):
        rule = HealingRule.model_validate({
            "name": "cleanup",
            "batchJob": {"metadata": {"name": "cleanup-job"}, "spec": {}},
        })

        assert isinstance(rule.action, BatchJobAction)
        assert rule.batch_job.name == "cleanup-job"
        assert rule.batch_job.job["spec"] == {}

    def test_rule_without_action(self):
        assert HealingRule(name="a").action is None

    def test_both_actions_rejected(self):
        with pytest.raises(ValidationError):
            HealingRule(
                name="a",
                awx_job=JobAction(template="t"),
                batch_job=BatchJobAction(job={"metadata": {"name": "j"}}),
            )

    def test_empty_delimiters_rejected(self):
        with pytest.raises(ValidationError):
            HealingRule(name="a", delimiters=("", "]]"))
