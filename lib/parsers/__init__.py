"""Canonical event stream model."""
