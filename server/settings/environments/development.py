"""Overriding settings for development environment."""

DEBUG = True

SECRET_KEY = 'development-only-secret-key'  # noqa: S105
