"""Data models for snipbook."""
