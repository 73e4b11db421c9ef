"""Namespace (file/directory) service settings."""

from server.settings.components import config

# Which content store backs file bytes: 's3', 'database' or 'memory'
FILES_CONTENT_BACKEND = config('FILES_CONTENT_BACKEND', default='s3')

# Copy completion polling used by rename/move
FILES_COPY_POLL_INTERVAL = config(
    'FILES_COPY_POLL_INTERVAL',
    cast=float,
    default=0.1,
)
FILES_COPY_MAX_ATTEMPTS = config(
    'FILES_COPY_MAX_ATTEMPTS',
    cast=int,
    default=50,
)

# Lifetime of signed download URLs, in seconds
FILES_DOWNLOAD_URL_TTL = config(
    'FILES_DOWNLOAD_URL_TTL',
    cast=int,
    default=3600,
)

# Base of the plain URLs handed out by the database content store
FILES_EMBEDDED_URL_BASE = config(
    'FILES_EMBEDDED_URL_BASE',
    default='/api/files/content/',
)
