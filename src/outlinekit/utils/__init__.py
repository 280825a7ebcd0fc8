"""Utility helpers for outlinekit."""
