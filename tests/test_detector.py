"""Tests for the change detector: bootstrap copy and change log replay."""

import pytest

from cmissync.models import ChangeEvent, ChangeType
from cmissync.sync.detector import ChangeDetector
from cmissync.sync.downloader import RemoteToLocalReplicator
from cmissync.sync.paths import PathMapper


@pytest.fixture
def remote_root(repo):
    return repo.makedirs("/Sites/demo")


@pytest.fixture
def make_detector(repo, database, local_root):
    def make(**kwargs):
        mapper = PathMapper(local_root, "/Sites/demo")
        downloader = RemoteToLocalReplicator(repo, database, mapper=mapper)
        return ChangeDetector(repo, database, mapper, downloader, **kwargs)

    return make


@pytest.fixture
def detector(make_detector):
    return make_detector()


class TestBootstrap:
    """Tests for the first sync of a folder."""

    def test_full_copy_and_token(
        self, repo, remote_root, detector, database, local_root, snapshot
    ):
        repo.add_document(remote_root, "a.txt", b"alpha")
        repo.add_document(repo.makedirs("/Sites/demo/docs"), "b.txt", b"beta")

        assert detector.sync(remote_root) is True

        assert snapshot(local_root) == {
            "a.txt": b"alpha",
            "docs": None,
            "docs/b.txt": b"beta",
        }
        assert database.get_change_log_token() == repo.get_latest_change_log_token()

    def test_failed_copy_keeps_no_token(self, repo, remote_root, detector, database):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        repo.null_streams.add(document.id)

        assert detector.sync(remote_root) is False
        assert database.get_change_log_token() is None

    def test_unchanged_server_is_noop(self, repo, remote_root, detector, database):
        repo.add_document(remote_root, "a.txt", b"alpha")
        detector.sync(remote_root)
        requests = list(repo.stream_requests)

        assert detector.sync(remote_root) is True
        assert repo.stream_requests == requests

    def test_without_change_log_every_cycle_copies(
        self, repo, remote_root, make_detector, database, local_root
    ):
        detector = make_detector(change_log_capability=False)
        repo.add_document(remote_root, "a.txt", b"alpha")

        assert detector.sync(remote_root) is True
        (local_root / "a.txt").unlink()
        assert detector.sync(remote_root) is True

        assert (local_root / "a.txt").read_bytes() == b"alpha"
        assert database.get_change_log_token() is None


class TestReplay:
    """Tests for replaying the change log after the first sync."""

    def test_created_documents_and_folders(
        self, repo, remote_root, detector, database, local_root, snapshot
    ):
        detector.sync(remote_root)

        repo.add_document(remote_root, "new.txt", b"new")
        docs = repo.makedirs("/Sites/demo/docs")
        repo.add_document(docs, "inner.txt", b"inner")

        assert detector.sync(remote_root) is True
        assert snapshot(local_root) == {
            "docs": None,
            "docs/inner.txt": b"inner",
            "new.txt": b"new",
        }
        assert database.get_change_log_token() == repo.get_latest_change_log_token()

    def test_created_folder_record_uses_own_date(
        self, repo, remote_root, detector, database, local_root
    ):
        detector.sync(remote_root)
        docs = repo.makedirs("/Sites/demo/docs")

        detector.sync(remote_root)

        record = database.get_folder(local_root / "docs")
        assert record.server_side_modification_date == docs.last_modification_date

    def test_updated_document(self, repo, remote_root, detector, local_root):
        document = repo.add_document(remote_root, "a.txt", b"v1")
        detector.sync(remote_root)

        repo.update_document(document.id, b"version two")

        assert detector.sync(remote_root) is True
        assert (local_root / "a.txt").read_bytes() == b"version two"

    def test_changes_outside_root_ignored(
        self, repo, remote_root, detector, database, local_root, snapshot
    ):
        repo.add_document(remote_root, "a.txt", b"alpha")
        detector.sync(remote_root)
        before = snapshot(local_root)

        other = repo.makedirs("/Sites/demo2")
        repo.add_document(other, "b.txt", b"beta")
        repo.add_document(repo.makedirs("/Archive"), "c.txt", b"gamma")

        assert detector.sync(remote_root) is True
        assert snapshot(local_root) == before
        assert database.get_change_log_token() == repo.get_latest_change_log_token()

    def test_deleted_folder_removed(
        self, repo, remote_root, detector, database, local_root
    ):
        docs = repo.makedirs("/Sites/demo/docs")
        repo.add_document(docs, "b.txt", b"beta")
        detector.sync(remote_root)
        assert (local_root / "docs" / "b.txt").exists()

        repo.delete(docs.id)

        assert detector.sync(remote_root) is True
        assert not (local_root / "docs").exists()
        assert not database.contains_folder(local_root / "docs")
        assert not database.contains_file(local_root / "docs" / "b.txt")

    def test_update_then_delete_ends_deleted(
        self, repo, remote_root, detector, local_root
    ):
        """Events are applied in order, so a later deletion wins."""
        docs = repo.makedirs("/Sites/demo/docs")
        detector.sync(remote_root)

        repo.update_properties(docs.id, {"cmis:name": "docs"})
        repo.delete(docs.id)

        assert detector.sync(remote_root) is True
        assert not (local_root / "docs").exists()

    def test_deleted_document_keeps_local_file(
        self, repo, remote_root, detector, local_root
    ):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        detector.sync(remote_root)

        repo.delete(document.id)

        assert detector.sync(remote_root) is True
        assert (local_root / "a.txt").read_bytes() == b"alpha"

    def test_deleted_root_keeps_local_root(
        self, repo, remote_root, detector, local_root
    ):
        repo.add_document(remote_root, "a.txt", b"alpha")
        detector.sync(remote_root)

        repo.delete(remote_root.id)

        assert detector.sync(remote_root) is True
        assert local_root.is_dir()

    def test_failure_keeps_token(
        self, repo, remote_root, detector, database, local_root
    ):
        """A failed event is retried by the next cycle."""
        detector.sync(remote_root)
        token = database.get_change_log_token()

        document = repo.add_document(remote_root, "a.txt", b"alpha")
        repo.null_streams.add(document.id)

        assert detector.sync(remote_root) is False
        assert database.get_change_log_token() == token

        repo.null_streams.discard(document.id)
        assert detector.sync(remote_root) is True
        assert (local_root / "a.txt").read_bytes() == b"alpha"
        assert database.get_change_log_token() == repo.get_latest_change_log_token()

    def test_paged_change_log(
        self, repo, remote_root, make_detector, database, local_root
    ):
        """With more events pending the token advances one page at a time."""
        detector = make_detector(max_items=1)
        detector.sync(remote_root)
        token = int(database.get_change_log_token())

        repo.add_document(remote_root, "a.txt", b"alpha")
        repo.add_document(remote_root, "b.txt", b"beta")

        assert detector.sync(remote_root) is True
        assert database.get_change_log_token() == str(token + 1)
        assert (local_root / "a.txt").exists()
        assert not (local_root / "b.txt").exists()

        assert detector.sync(remote_root) is True
        assert database.get_change_log_token() == str(token + 2)
        assert (local_root / "b.txt").exists()


class TestApplyRemoteChange:
    """Tests for single events."""

    def test_security_event_ignored(self, detector):
        event = ChangeEvent(change_type=ChangeType.SECURITY, object_id="obj-1")
        assert detector.apply_remote_change(event) is True

    def test_unknown_deleted_object_skipped(self, detector):
        event = ChangeEvent(change_type=ChangeType.DELETED, object_id="missing")
        assert detector.apply_remote_change(event) is True

    def test_vanished_object_skipped(self, detector):
        event = ChangeEvent(change_type=ChangeType.UPDATED, object_id="missing")
        assert detector.apply_remote_change(event) is True

    def test_deleted_folder_with_id_only(
        self, repo, remote_root, detector, database, local_root
    ):
        """A deleted folder is found through the id remembered at sync time."""
        docs = repo.makedirs("/Sites/demo/docs")
        repo.add_document(docs, "b.txt", b"beta")
        detector.sync(remote_root)
        repo.delete(docs.id)
        event = ChangeEvent(
            change_type=ChangeType.DELETED,
            object_id=docs.id,
            properties={"cmis:objectId": docs.id},
        )

        assert detector.apply_remote_change(event) is True
        assert not (local_root / "docs").exists()
        assert not database.contains_folder(local_root / "docs")

    def test_deleted_document_with_id_only(
        self, repo, remote_root, detector, local_root
    ):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        detector.sync(remote_root)
        repo.delete(document.id)
        event = ChangeEvent(change_type=ChangeType.DELETED, object_id=document.id)

        assert detector.apply_remote_change(event) is True
        assert (local_root / "a.txt").read_bytes() == b"alpha"

    def test_deleted_folder_looked_up(self, repo, remote_root, detector, local_root):
        """Folders never synchronized are resolved on the server."""
        docs = repo.makedirs("/Sites/demo/docs")
        (local_root / "docs").mkdir()
        event = ChangeEvent(change_type=ChangeType.DELETED, object_id=docs.id)

        assert detector.apply_remote_change(event) is True
        assert not (local_root / "docs").exists()

    def test_document_in_excluded_folder_skipped(
        self, repo, remote_root, detector, local_root
    ):
        """Change events follow the same folder rules as the full copy."""
        git = repo.makedirs("/Sites/demo/.git")
        config = repo.add_document(git, "config", b"[core]")
        detector.sync(remote_root)
        assert not (local_root / ".git").exists()

        event = ChangeEvent(change_type=ChangeType.UPDATED, object_id=config.id)

        assert detector.apply_remote_change(event) is True
        assert not (local_root / ".git").exists()
