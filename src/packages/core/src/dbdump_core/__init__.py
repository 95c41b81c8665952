"""Resumable SQL dump engine."""
