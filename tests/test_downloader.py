"""Tests for replicating remote content into the local tree."""

import pytest

from cmissync.exceptions import CmisPermissionError
from cmissync.sync.downloader import RemoteToLocalReplicator, staging_path
from cmissync.sync.paths import PathMapper
from cmissync.sync.rules import RuleFilter


class RecordingListener:
    """Activity listener counting notifications."""

    def __init__(self):
        self.started_count = 0
        self.stopped_count = 0

    def started(self):
        self.started_count += 1

    def stopped(self):
        self.stopped_count += 1


@pytest.fixture
def remote_root(repo):
    return repo.makedirs("/Sites/demo")


@pytest.fixture
def downloader(repo, database):
    return RemoteToLocalReplicator(repo, database, chunk_size=1024)


class TestRecursiveFolderCopy:
    """Tests for RemoteToLocalReplicator.recursive_folder_copy."""

    def test_copies_tree(self, repo, remote_root, downloader, local_root, snapshot):
        sub = repo.makedirs("/Sites/demo/docs/2024")
        repo.add_document(remote_root, "readme.txt", b"hello")
        repo.add_document(sub, "report.pdf", b"%PDF-1.7")

        assert downloader.recursive_folder_copy(remote_root, local_root) is True

        assert snapshot(local_root) == {
            "docs": None,
            "docs/2024": None,
            "docs/2024/report.pdf": b"%PDF-1.7",
            "readme.txt": b"hello",
        }

    def test_records_in_database(
        self, repo, remote_root, downloader, database, local_root
    ):
        repo.makedirs("/Sites/demo/docs")
        document = repo.add_document(remote_root, "readme.txt", b"hello")

        downloader.recursive_folder_copy(remote_root, local_root)

        record = database.get_file(local_root / "readme.txt")
        assert record.server_side_modification_date == document.last_modification_date
        assert record.metadata["id"] == document.id
        assert record.metadata["version_label"] == "1.0"
        assert database.contains_folder(local_root / "docs")

    def test_folder_record_uses_parent_date(
        self, repo, remote_root, downloader, database, local_root
    ):
        """Subfolder records carry the modification date of their parent."""
        repo.makedirs("/Sites/demo/docs")
        parent = repo.get_object_by_path("/Sites/demo")

        downloader.recursive_folder_copy(parent, local_root)

        record = database.get_folder(local_root / "docs")
        assert record.server_side_modification_date == parent.last_modification_date

    def test_idempotent(self, repo, remote_root, downloader, local_root, snapshot):
        """Copying an unchanged tree twice gives the same local tree."""
        sub = repo.makedirs("/Sites/demo/docs")
        repo.add_document(sub, "a.txt", b"alpha")
        repo.add_document(remote_root, "b.txt", b"beta")

        downloader.recursive_folder_copy(remote_root, local_root)
        first = snapshot(local_root)
        downloader.recursive_folder_copy(remote_root, local_root)

        assert snapshot(local_root) == first

    def test_excluded_paths_skipped(
        self, repo, remote_root, downloader, local_root, snapshot
    ):
        git = repo.makedirs("/Sites/demo/.git")
        repo.add_document(git, "config", b"[core]")
        repo.add_document(remote_root, "notes.txt~", b"backup")
        repo.add_document(remote_root, "draft.tmp", b"temp")
        repo.add_document(remote_root, "kept.txt", b"kept")

        assert downloader.recursive_folder_copy(remote_root, local_root) is True
        assert snapshot(local_root) == {"kept.txt": b"kept"}

    def test_extra_ignore_rules(
        self, repo, remote_root, database, local_root, snapshot
    ):
        repo.add_document(remote_root, "secret-plan.txt", b"x")
        repo.add_document(remote_root, "public.txt", b"y")
        rules = RuleFilter(["secret"])
        downloader = RemoteToLocalReplicator(repo, database, rules=rules)

        downloader.recursive_folder_copy(remote_root, local_root)

        assert snapshot(local_root) == {"public.txt": b"y"}

    def test_failure_reported_but_siblings_copied(
        self, repo, remote_root, downloader, local_root, snapshot
    ):
        """A failed document does not stop the rest of the copy."""
        broken = repo.add_document(remote_root, "broken.bin", b"data")
        repo.add_document(remote_root, "fine.txt", b"fine")
        repo.null_streams.add(broken.id)

        assert downloader.recursive_folder_copy(remote_root, local_root) is False
        assert snapshot(local_root) == {"fine.txt": b"fine"}

    def test_unreadable_folder_does_not_stop_copy(
        self, repo, remote_root, downloader, local_root, snapshot, monkeypatch
    ):
        """A folder that cannot be listed fails alone, siblings are copied."""
        locked = repo.makedirs("/Sites/demo/a_locked")
        repo.add_document(locked, "hidden.txt", b"hidden")
        repo.add_document(repo.makedirs("/Sites/demo/b_ok"), "x.txt", b"x")
        repo.add_document(remote_root, "z.txt", b"z")
        list_children = repo.iter_children

        def iter_children(folder):
            if folder.id == locked.id:
                raise CmisPermissionError("Access forbidden")
            return list_children(folder)

        monkeypatch.setattr(repo, "iter_children", iter_children)

        assert downloader.recursive_folder_copy(remote_root, local_root) is False
        assert snapshot(local_root) == {
            "a_locked": None,
            "b_ok": None,
            "b_ok/x.txt": b"x",
            "z.txt": b"z",
        }

    def test_folder_record_keeps_object_id(
        self, repo, remote_root, downloader, database, local_root
    ):
        docs = repo.makedirs("/Sites/demo/docs")

        downloader.recursive_folder_copy(remote_root, local_root)

        assert database.get_folder(local_root / "docs").object_id == docs.id
        assert database.find_by_object_id(docs.id).path == str(local_root / "docs")

    def test_rules_ignore_root_path(self, repo, database, local_root, snapshot):
        """Rules only look at the part of the path below the remote root."""
        home = repo.makedirs("/User Homes/~john")
        repo.add_document(repo.makedirs("/User Homes/~john/docs"), "a.txt", b"a")
        repo.add_document(home, "b.txt~", b"backup")
        mapper = PathMapper(local_root, "/User Homes/~john")
        downloader = RemoteToLocalReplicator(repo, database, mapper=mapper)

        assert downloader.recursive_folder_copy(home, local_root) is True
        assert snapshot(local_root) == {"docs": None, "docs/a.txt": b"a"}

    def test_activity_reported(self, repo, remote_root, database, local_root):
        repo.makedirs("/Sites/demo/docs")
        repo.add_document(remote_root, "a.txt", b"a")
        listener = RecordingListener()
        downloader = RemoteToLocalReplicator(repo, database, activity_listener=listener)

        downloader.recursive_folder_copy(remote_root, local_root)

        # Two folder copies and one download
        assert listener.started_count == 3
        assert listener.stopped_count == 3


class TestDownloadFile:
    """Tests for RemoteToLocalReplicator.download_file."""

    def test_download(self, repo, remote_root, downloader, local_root):
        document = repo.add_document(remote_root, "a.txt", b"alpha")

        path = downloader.download_file(document, local_root)

        assert path == local_root / "a.txt"
        assert path.read_bytes() == b"alpha"
        assert not staging_path(path).exists()

    def test_creates_missing_folder(self, repo, remote_root, downloader, local_root):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        path = downloader.download_file(document, local_root / "new" / "folder")
        assert path.read_bytes() == b"alpha"

    def test_replaces_existing_file(self, repo, remote_root, downloader, local_root):
        """The remote version wins over an existing local file."""
        document = repo.add_document(remote_root, "a.txt", b"remote")
        (local_root / "a.txt").write_bytes(b"local edits")

        path = downloader.download_file(document, local_root)

        assert path.read_bytes() == b"remote"

    def test_interrupted_download_leaves_no_target(
        self, repo, remote_root, downloader, local_root
    ):
        """Partial content stays in the staging file only."""
        content = bytes(range(256)) * 40
        document = repo.add_document(remote_root, "big.bin", content)
        repo.fail_after[document.id] = 3000

        assert downloader.download_file(document, local_root) is None

        target = local_root / "big.bin"
        assert not target.exists()
        assert staging_path(target).read_bytes() == content[:3000]

    def test_resume_after_interruption(
        self, repo, remote_root, downloader, database, local_root
    ):
        """The next attempt asks only for the missing bytes."""
        content = bytes(range(256)) * 40
        document = repo.add_document(remote_root, "big.bin", content)
        repo.fail_after[document.id] = 3000

        downloader.download_file(document, local_root)
        path = downloader.download_file(document, local_root)

        assert path.read_bytes() == content
        assert repo.stream_requests == [(document.id, 0), (document.id, 3000)]
        assert not staging_path(path).exists()
        assert database.contains_file(path)

    def test_server_ignoring_range_restarts(
        self, repo, remote_root, downloader, local_root
    ):
        """A stream served from byte 0 overwrites the partial file."""
        document = repo.add_document(remote_root, "a.txt", b"0123456789")
        staging_path(local_root / "a.txt").write_bytes(b"xxxx")
        repo.ignore_range = True

        path = downloader.download_file(document, local_root)

        assert path.read_bytes() == b"0123456789"
        assert repo.stream_requests == [(document.id, 4)]

    def test_stale_partial_file_discarded(
        self, repo, remote_root, downloader, local_root
    ):
        """A partial file longer than the document is started over."""
        document = repo.add_document(remote_root, "a.txt", b"short")
        staging_path(local_root / "a.txt").write_bytes(b"much longer leftover")

        path = downloader.download_file(document, local_root)

        assert path.read_bytes() == b"short"
        assert repo.stream_requests == [(document.id, 0)]

    def test_complete_partial_file_not_fetched(
        self, repo, remote_root, downloader, local_root
    ):
        document = repo.add_document(remote_root, "a.txt", b"complete")
        staging_path(local_root / "a.txt").write_bytes(b"complete")

        path = downloader.download_file(document, local_root)

        assert path.read_bytes() == b"complete"
        assert repo.stream_requests == []

    def test_null_content_stream(
        self, repo, remote_root, downloader, database, local_root
    ):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        repo.null_streams.add(document.id)

        assert downloader.download_file(document, local_root) is None
        assert not (local_root / "a.txt").exists()
        assert not staging_path(local_root / "a.txt").exists()
        assert not database.contains_file(local_root / "a.txt")

    def test_empty_document(self, repo, remote_root, downloader, local_root):
        document = repo.add_document(remote_root, "empty.txt", b"")
        path = downloader.download_file(document, local_root)
        assert path.read_bytes() == b""

    def test_directory_in_the_way(self, repo, remote_root, downloader, local_root):
        document = repo.add_document(remote_root, "a.txt", b"alpha")
        (local_root / "a.txt").mkdir()

        assert downloader.download_file(document, local_root) is None
        assert (local_root / "a.txt").is_dir()


class TestRemoveFolderLocally:
    """Tests for RemoteToLocalReplicator.remove_folder_locally."""

    def test_removes_tree_and_records(self, repo, downloader, database, local_root):
        folder = local_root / "docs"
        (folder / "sub").mkdir(parents=True)
        (folder / "sub" / "a.txt").write_text("a")
        database.add_folder(folder, None)
        database.add_file(folder / "sub" / "a.txt", None)

        assert downloader.remove_folder_locally(folder) is True

        assert not folder.exists()
        assert not database.contains_folder(folder)
        assert not database.contains_file(folder / "sub" / "a.txt")

    def test_missing_folder(self, downloader, database, local_root):
        """Removing a folder that is already gone still clears the cache."""
        database.add_folder(local_root / "gone", None)
        assert downloader.remove_folder_locally(local_root / "gone") is True
        assert not database.contains_folder(local_root / "gone")
