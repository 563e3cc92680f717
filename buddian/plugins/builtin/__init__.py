"""Plugins shipped with buddian."""
