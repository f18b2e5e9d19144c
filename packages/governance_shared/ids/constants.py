"""Shared ULID and PostgreSQL-domain constants."""

ULID_DOMAIN_NAME = "ulid_bin"
