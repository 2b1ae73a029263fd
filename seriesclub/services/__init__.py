"""Stores, catalog client and aggregators backing the SeriesClub API."""
