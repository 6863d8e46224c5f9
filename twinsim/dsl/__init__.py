"""Scenario-file loading and device selection."""
