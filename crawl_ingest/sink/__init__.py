"""Warehouse sinks."""
