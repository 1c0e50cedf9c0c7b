"""Shared application settings read from environment variables."""

import os

DATA_DIR: str = os.environ.get('DATA_DIR', 'data')
LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO').upper()
GOOGLE_DIRECTIONS_API_KEY: str = os.environ.get('GOOGLE_DIRECTIONS_API_KEY', '')
# Optional path to a YAML file overriding the packaged planner config.
TRIPFLOW_CONFIG: str | None = os.environ.get('TRIPFLOW_CONFIG') or None
