"""Management command to reconcile content and metadata stores."""

import logging
from typing import Any

from django.apps import apps
from django.core.management.base import BaseCommand

from server.apps.files.infrastructure.backends import (
    BACKEND_NAMES,
    build_content_store,
)
from server.apps.files.infrastructure.metadata import MetadataStore
from server.apps.files.logic.reconciliation import find_inconsistencies, repair

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Find and repair paths present in only one of the two stores."""

    help = 'Report and repair drift between file content and metadata'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show inconsistencies without repairing them',
        )
        parser.add_argument(
            '--backend',
            choices=BACKEND_NAMES,
            default=None,
            help='Content backend to check (default: FILES_CONTENT_BACKEND)',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the reconcile command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        backend = options['backend']

        if backend:
            content = build_content_store(backend)
        else:
            content = apps.get_app_config('files').content_store
        metadata = MetadataStore()

        report = find_inconsistencies(content, metadata)
        for path in report.metadata_only:
            self.stdout.write(f'Record without content: {path}')
        for path in report.content_only:
            self.stdout.write(f'Content without record: {path}')
        for path in report.orphan_placeholders:
            self.stdout.write(f'Placeholder without directory: {path}')

        if report.is_consistent:
            self.stdout.write(self.style.SUCCESS('Stores are consistent'))
            return

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f'Would adopt {len(report.content_only)} objects, '
                    f'remove {len(report.metadata_only)} records and '
                    f'{len(report.orphan_placeholders)} placeholders',
                ),
            )
            return

        summary = repair(report, content, metadata)
        logger.info('Reconciliation finished: %s', summary)
        message = (
            f'Adopted {summary.adopted} objects, '
            f'removed {summary.removed_records} records and '
            f'{summary.removed_placeholders} placeholders, '
            f'{summary.failed} failed'
        )
        if summary.failed:
            self.stderr.write(self.style.ERROR(message))
        else:
            self.stdout.write(self.style.SUCCESS(message))
