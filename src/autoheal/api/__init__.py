"""Autoheal HTTP API."""
