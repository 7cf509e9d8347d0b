"""Core domain package for groupwatch.

Core contains parsing, dedup, keyword scoring, importance classification,
ingestion and digest logic without any Telegram, HTTP or storage-specific
code, keeping the business logic portable.
"""
