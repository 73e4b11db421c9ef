"""Management command to move file content between backends."""

import logging
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from server.apps.files.infrastructure.backends import (
    BACKEND_NAMES,
    build_content_store,
)
from server.apps.files.infrastructure.metadata import MetadataStore
from server.apps.files.logic.reconciliation import migrate_content

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Move the content of every file from one backend to another."""

    help = 'Migrate file content between content backends'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--source',
            choices=BACKEND_NAMES,
            required=True,
            help='Backend currently holding the content',
        )
        parser.add_argument(
            '--target',
            choices=BACKEND_NAMES,
            required=True,
            help='Backend to move the content to',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be migrated without migrating',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the migration command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If source and target are the same backend.
        """
        source_name = options['source']
        target_name = options['target']
        if source_name == target_name:
            raise CommandError('Source and target backends must differ')

        source = build_content_store(source_name)
        metadata = MetadataStore()

        if options['dry_run']:
            count = 0
            for record in metadata.files_in_subtree('').order_by('path'):
                if source.exists(record.path):
                    self.stdout.write(
                        f'Would migrate: {record.path} '
                        f'({record.size_bytes} bytes)',
                    )
                    count += 1
            self.stdout.write(
                self.style.SUCCESS(f'Would migrate {count} files'),
            )
            return

        target = build_content_store(target_name)
        self.stdout.write(f'Migrating content from {source_name} to {target_name}')
        summary = migrate_content(source, target, metadata)
        logger.info(
            'Content migration %s -> %s finished: %s',
            source_name,
            target_name,
            summary,
        )
        self.stdout.write(
            self.style.SUCCESS(
                f'Migrated {summary.migrated} files, '
                f'{summary.failed} failed, {summary.skipped} skipped',
            ),
        )
