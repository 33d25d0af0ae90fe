"""Availability-query benchmark harness for a geo-indexed booking store."""
