"""Durable ingestion of SEC Form 13F holdings filings."""

__version__ = "0.1.0"
