"""Timed test sessions, evaluation and two-player challenges."""
