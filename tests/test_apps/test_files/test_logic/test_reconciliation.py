"""Tests for store reconciliation and content migration."""

import pytest

from server.apps.files.logic.reconciliation import (
    ConsistencyReport,
    find_inconsistencies,
    migrate_content,
    repair,
)
from server.apps.files.models import Directory, File


@pytest.fixture
def drifted(coordinator, memory_store):
    """Stores with one problem of each kind.

    - 'docs/a.txt' is consistent;
    - 'docs/lost.txt' has a record but no content;
    - 'stray/found.txt' has content but no record;
    - 'gone/.placeholder' has no directory record.

    Returns:
        Coordinator over the drifted stores.
    """
    coordinator.upload(b'a', 'a.txt', 'docs')
    coordinator.upload(b'lost', 'lost.txt', 'docs')
    memory_store.delete('docs/lost.txt')
    memory_store.put('stray/found.txt', b'found', 'text/plain')
    memory_store.put('gone/.placeholder', b'', 'application/octet-stream')
    return coordinator


@pytest.mark.django_db
class TestFindInconsistencies:
    """Tests for find_inconsistencies."""

    def test_consistent_stores(self, coordinator, memory_store, metadata_store):
        """Test stores written through the coordinator agree."""
        coordinator.upload(b'a', 'a.txt', 'docs/sub')
        coordinator.mkdir('empty')

        report = find_inconsistencies(memory_store, metadata_store)

        assert report.is_consistent
        assert report == ConsistencyReport()

    def test_reports_each_kind(self, drifted, memory_store, metadata_store):
        """Test every one-sided path is reported once."""
        report = find_inconsistencies(memory_store, metadata_store)

        assert not report.is_consistent
        assert report.metadata_only == ('docs/lost.txt',)
        assert report.content_only == ('stray/found.txt',)
        assert report.orphan_placeholders == ('gone/.placeholder',)


@pytest.mark.django_db
class TestRepair:
    """Tests for repair."""

    def test_repairs_everything(self, drifted, memory_store, metadata_store):
        """Test each problem is resolved in the right direction."""
        report = find_inconsistencies(memory_store, metadata_store)

        summary = repair(report, memory_store, metadata_store)

        assert summary.adopted == 1
        assert summary.removed_records == 1
        assert summary.removed_placeholders == 1
        assert summary.failed == 0
        assert not File.objects.filter(path='docs/lost.txt').exists()
        adopted = File.objects.get(path='stray/found.txt')
        assert adopted.size_bytes == 5
        assert adopted.directory.path == 'stray'
        assert memory_store.exists('stray/.placeholder')
        assert not memory_store.exists('gone/.placeholder')
        assert find_inconsistencies(memory_store, metadata_store).is_consistent

    def test_rechecks_before_acting(self, drifted, memory_store, metadata_store):
        """Test paths fixed since the report are left alone."""
        report = find_inconsistencies(memory_store, metadata_store)
        memory_store.put('docs/lost.txt', b'back', 'text/plain')
        Directory.objects.create(name='gone', path='gone')

        summary = repair(report, memory_store, metadata_store)

        assert summary.removed_records == 0
        assert summary.removed_placeholders == 0
        assert File.objects.filter(path='docs/lost.txt').exists()
        assert memory_store.exists('gone/.placeholder')

    def test_counts_failures(self, drifted, flaky_store, metadata_store):
        """Test a failing path is counted and the rest proceed."""
        report = ConsistencyReport(
            content_only=('missing.txt',),
            metadata_only=('docs/lost.txt',),
        )

        summary = repair(report, flaky_store, metadata_store)

        assert summary.failed == 1
        assert summary.removed_records == 1


@pytest.mark.django_db
class TestMigrateContent:
    """Tests for migrate_content."""

    def test_moves_every_file(self, coordinator, memory_store, metadata_store):
        """Test content moves and placeholders are written in the target."""
        coordinator.upload(b'a', 'a.txt', 'docs')
        coordinator.upload(b'b', 'b.txt')
        coordinator.mkdir('empty')
        target = type(memory_store)()

        summary = migrate_content(memory_store, target, metadata_store)

        assert summary.migrated == 2
        assert summary.failed == 0
        assert summary.skipped == 0
        assert target.get('docs/a.txt').data == b'a'
        assert target.get('b.txt').data == b'b'
        assert target.exists('empty/.placeholder')
        assert not memory_store.exists('docs/a.txt')

    def test_into_database_store(
        self,
        coordinator,
        memory_store,
        database_store,
        metadata_store,
    ):
        """Test the database store needs no placeholders."""
        coordinator.upload(b'a', 'a.txt', 'docs')

        summary = migrate_content(memory_store, database_store, metadata_store)

        assert summary.migrated == 1
        assert database_store.get('docs/a.txt').data == b'a'
        assert not database_store.exists('docs/.placeholder')

    def test_skips_missing_and_counts_failures(
        self,
        coordinator,
        memory_store,
        flaky_store,
        metadata_store,
    ):
        """Test missing sources are skipped and failed writes counted."""
        coordinator.upload(b'a', 'a.txt')
        coordinator.upload(b'b', 'b.txt')
        coordinator.upload(b'c', 'c.txt')
        memory_store.delete('c.txt')
        flaky_store.fail_on('put', paths={'b.txt'})

        summary = migrate_content(memory_store, flaky_store, metadata_store)

        assert summary.migrated == 1
        assert summary.failed == 1
        assert summary.skipped == 1
        assert memory_store.exists('b.txt')
        assert flaky_store.exists('a.txt')
