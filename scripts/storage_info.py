#!/usr/bin/env python3
"""Print the active storage backend, its settings and quota as JSON."""

from __future__ import annotations

import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from acer_storage.config.startup import configure_logging  # noqa: E402
from acer_storage.services.storage import StorageError, StorageService  # noqa: E402


def main():
    configure_logging()
    try:
        service = StorageService()
    except StorageError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    try:
        print(json.dumps(service.describe_backend(), indent=2, sort_keys=True, default=str))
    finally:
        service.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
