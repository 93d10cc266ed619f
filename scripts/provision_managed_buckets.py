#!/usr/bin/env python3
"""Create or check the managed storage buckets declared for each category."""

from __future__ import annotations

import argparse
import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from acer_storage.config.startup import configure_logging  # noqa: E402
from acer_storage.services.storage import CategoryPolicyTable, StorageError  # noqa: E402
from acer_storage.services.storage.factory import build_managed_backend, load_storage_settings_from_env  # noqa: E402


def parse_args(argv=None):
    p = argparse.ArgumentParser(description='Provision managed storage buckets (avatars, recordings, ...)')
    p.add_argument('--dry-run', action='store_true', help='Report what would be created without creating it')
    p.add_argument('--verify-only', action='store_true', help='Only compare provisioned visibility with policy')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging()

    try:
        settings = load_storage_settings_from_env()
        # Visibility check against remote buckets is what --verify-only is for
        settings.verify_containers = False
        backend = build_managed_backend(settings, CategoryPolicyTable())
    except StorageError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    try:
        if args.verify_only:
            problems = backend.verify_provisioned_visibility()
            if problems:
                for problem in problems:
                    print(f"MISMATCH: {problem}", file=sys.stderr)
                return 1
            print('All managed buckets match their category visibility')
            return 0

        report = backend.provision(dry_run=args.dry_run)
        print(json.dumps(report, indent=2, sort_keys=True))
        if any(status == 'visibility_mismatch' for status in report.values()):
            return 1
        return 0
    except StorageError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    finally:
        backend.close()


if __name__ == '__main__':
    raise SystemExit(main())
