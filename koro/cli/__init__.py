"""Koro command-line interface."""
