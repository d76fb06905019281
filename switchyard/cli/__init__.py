"""Switchyard command-line interface."""
