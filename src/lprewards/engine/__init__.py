"""Reward computation engine."""
