"""Tests for backup discovery and metadata extraction."""
from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path

import pytest

from iobmaint.archive import (
    BackupArchiveError,
    collect_component_versions,
    discover_backups,
    infer_compression,
    read_archive_member,
)

METADATA_MEMBER = "backup/backup.json"


def _controller(host: str, version: object) -> dict[str, object]:
    return {
        "id": f"system.host.{host}",
        "value": {"common": {"title": "JS controller", "installedVersion": version}},
    }


def _write_archive(path: Path, members: dict[str, bytes], *, mode: str = "w:gz") -> Path:
    with tarfile.open(path, mode) as archive:
        for name, payload in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            archive.addfile(info, io.BytesIO(payload))
    return path


def _metadata(*objects: dict[str, object]) -> bytes:
    return json.dumps({"objects": list(objects)}).encode("utf-8")


def test_discover_backups_lists_regular_files_sorted(tmp_path: Path) -> None:
    """Only top-level files are candidates, ordered by name."""
    (tmp_path / "b_2024.tar.gz").write_bytes(b"")
    (tmp_path / "a_2023.tar.gz").write_bytes(b"")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "c.tar.gz").write_bytes(b"")

    assert [path.name for path in discover_backups(tmp_path)] == [
        "a_2023.tar.gz",
        "b_2024.tar.gz",
    ]


def test_discover_backups_missing_directory(tmp_path: Path) -> None:
    """A missing backup directory yields no candidates."""
    assert discover_backups(tmp_path / "missing") == []


@pytest.mark.parametrize(
    ("name", "algorithm"),
    [
        ("iobroker_2024.tar.gz", "gzip"),
        ("backup.TGZ", "gzip"),
        ("backup.tar.zst", "zstd"),
        ("backup.tzst", "zstd"),
        ("backup.tar", "none"),
    ],
)
def test_infer_compression(name: str, algorithm: str) -> None:
    """The compression is guessed from the archive suffix."""
    assert infer_compression(Path(name)) == algorithm


def test_read_archive_member_from_gzip(tmp_path: Path) -> None:
    """The metadata member is extracted and parsed from a gzip archive."""
    archive = _write_archive(
        tmp_path / "backup_2024.tar.gz",
        {
            METADATA_MEMBER: _metadata(_controller("a", "6.1.0")),
            "backup/objects.jsonl": b"{}\n",
        },
    )

    document = read_archive_member(archive, METADATA_MEMBER)

    assert collect_component_versions(document, "JS controller") == ["6.1.0"]


def test_read_archive_member_from_plain_tar(tmp_path: Path) -> None:
    """Uncompressed archives are supported as well."""
    archive = _write_archive(
        tmp_path / "backup.tar",
        {METADATA_MEMBER: _metadata(_controller("a", "5.0.1"))},
        mode="w",
    )

    document = read_archive_member(archive, METADATA_MEMBER)

    assert collect_component_versions(document, "JS controller") == ["5.0.1"]


def test_read_archive_member_leaves_no_extracted_files(tmp_path: Path) -> None:
    """Extraction happens in a temporary directory that is cleaned up."""
    backups = tmp_path / "backups"
    backups.mkdir()
    archive = _write_archive(
        backups / "backup.tar.gz",
        {METADATA_MEMBER: _metadata(_controller("a", "6.1.0"))},
    )

    read_archive_member(archive, METADATA_MEMBER)

    assert [path.name for path in backups.iterdir()] == ["backup.tar.gz"]


def test_read_archive_member_missing_member(tmp_path: Path) -> None:
    """Archives without the metadata member raise BackupArchiveError."""
    archive = _write_archive(tmp_path / "backup.tar.gz", {"other/file.txt": b"hi"})

    with pytest.raises(BackupArchiveError):
        read_archive_member(archive, METADATA_MEMBER)


def test_read_archive_member_invalid_json(tmp_path: Path) -> None:
    """Unparseable metadata raises BackupArchiveError."""
    archive = _write_archive(tmp_path / "backup.tar.gz", {METADATA_MEMBER: b"{not json"})

    with pytest.raises(BackupArchiveError, match="not valid JSON"):
        read_archive_member(archive, METADATA_MEMBER)


def test_read_archive_member_requires_object(tmp_path: Path) -> None:
    """Metadata must be a JSON object."""
    archive = _write_archive(tmp_path / "backup.tar.gz", {METADATA_MEMBER: b"[1, 2]"})

    with pytest.raises(BackupArchiveError, match="JSON object"):
        read_archive_member(archive, METADATA_MEMBER)


def test_read_archive_member_corrupt_archive(tmp_path: Path) -> None:
    """Files that are not archives raise BackupArchiveError."""
    archive = tmp_path / "backup.tar.gz"
    archive.write_bytes(b"this is not gzip")

    with pytest.raises(BackupArchiveError):
        read_archive_member(archive, METADATA_MEMBER)


def test_read_archive_member_without_tar(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A missing tar binary is reported instead of crashing."""
    monkeypatch.setattr("iobmaint.archive.shutil.which", lambda name: None)

    with pytest.raises(BackupArchiveError, match="'tar' command"):
        read_archive_member(tmp_path / "backup.tar.gz", METADATA_MEMBER)


def test_collect_component_versions_for_multihost_backup() -> None:
    """Every controller entry contributes its version, other objects are ignored."""
    document = {
        "objects": [
            _controller("a", "6.1.0"),
            _controller("b", "6.1.0"),
            {"id": "system.adapter.admin", "value": {"common": {"title": "Admin"}}},
            {"id": "broken", "value": None},
            "not-an-object",
        ]
    }

    assert collect_component_versions(document, "JS controller") == ["6.1.0", "6.1.0"]


def test_collect_component_versions_keeps_missing_versions() -> None:
    """Controller entries without a usable version contribute an empty string."""
    document = {
        "objects": [
            _controller("a", None),
            _controller("b", "  "),
            _controller("c", 6),
            _controller("d", " 5.0.2 "),
        ]
    }

    assert collect_component_versions(document, "JS controller") == ["", "", "", "5.0.2"]


def test_collect_component_versions_without_installed_version_key() -> None:
    """A controller object lacking the field still counts as one host."""
    document = {
        "objects": [
            _controller("a", "6.1.0"),
            {"id": "system.host.b", "value": {"common": {"title": "JS controller"}}},
        ]
    }

    assert collect_component_versions(document, "JS controller") == ["6.1.0", ""]


def test_collect_component_versions_accepts_mapping_of_objects() -> None:
    """Objects keyed by id are handled like a list."""
    document = {"objects": {"system.host.a": _controller("a", "5.0.1")}}

    assert collect_component_versions(document, "JS controller") == ["5.0.1"]


def test_collect_component_versions_without_objects() -> None:
    """Documents without objects yield an empty version set."""
    assert collect_component_versions({}, "JS controller") == []
    assert collect_component_versions({"objects": 42}, "JS controller") == []
