"""Utility helpers for the production kernel."""
