"""Snapshot builders shared by the test suite."""
