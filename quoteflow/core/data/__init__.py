"""Data access: universe, providers and storage."""
