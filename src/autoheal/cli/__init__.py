"""Autoheal command line interface."""
