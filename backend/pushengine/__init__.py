"""Encrypted Web Push delivery engine."""
