"""Compute jobs: backend clients, lifecycle, result extraction, runner."""
