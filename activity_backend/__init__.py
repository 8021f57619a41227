"""Strava activity proxy: token lifecycle, bulk fetch + enrichment, local dataset and analytics."""

__version__ = "0.1.0"
