"""Quarterly academic career simulation engine."""
