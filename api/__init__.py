"""Mindsta payments HTTP API."""
