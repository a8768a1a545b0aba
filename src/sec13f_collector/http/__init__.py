"""Outbound HTTP access to SEC EDGAR."""
