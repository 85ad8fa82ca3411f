"""Utility helpers shared across auth-coordinator."""
