"""Scope admission and result mapping."""
