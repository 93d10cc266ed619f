"""
Application configuration.

Importing this module loads a ``.env`` file from the working directory, so
environment variables set there are visible to ``load_storage_settings_from_env``.
"""

import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# SDK loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'googleapiclient.discovery_cache', 'httpx', 'httpcore')
