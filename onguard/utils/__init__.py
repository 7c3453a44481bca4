"""Shared helpers for OnGuard."""
