"""Overriding settings for production environment.

Values here are expected to come from the environment, see `.env`.
"""

from server.settings.components import config

DEBUG = False

SECRET_KEY = config('DJANGO_SECRET_KEY')
