"""Core shared logic for strategy models, fingerprints, and condition evaluation.

This package contains pure business logic with no I/O dependencies
(no database, Redis, or network access).
"""
