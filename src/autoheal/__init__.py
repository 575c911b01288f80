"""Autoheal - rule-driven remediation for Alertmanager notifications."""

__version__ = "0.1.0"
