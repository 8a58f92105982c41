"""Backup archive helpers used by the restore workflow."""
from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path


class BackupArchiveError(RuntimeError):
    """Raised when metadata cannot be read from a backup archive."""


def discover_backups(root: Path) -> list[Path]:
    """Return the regular files directly under *root*, sorted by name."""
    if not root.is_dir():
        return []
    return sorted(
        (path for path in root.iterdir() if path.is_file()),
        key=lambda path: path.name,
    )


def infer_compression(archive_path: Path) -> str:
    """Guess the compression algorithm from the archive suffix."""
    lowered = archive_path.name.lower()
    if lowered.endswith((".tar.gz", ".tgz")):
        return "gzip"
    if lowered.endswith((".tar.zst", ".tzst")):
        return "zstd"
    return "none"


def read_archive_member(archive_path: Path, member: str) -> dict[str, object]:
    """Extract *member* alone from *archive_path* and parse it as JSON.

    The member is extracted into a temporary directory that is removed before
    returning, the rest of the archive is left untouched.
    """
    tar_bin = shutil.which("tar")
    if tar_bin is None:
        raise BackupArchiveError("The 'tar' command is required to inspect backups.")

    algorithm = infer_compression(archive_path)
    with tempfile.TemporaryDirectory(prefix=".iobmaint-metadata-") as staging:
        cmd: list[str] = [tar_bin]
        if algorithm == "gzip":
            cmd.extend(["-xzf", str(archive_path)])
        elif algorithm == "zstd":
            cmd.extend(["--zstd", "-xf", str(archive_path)])
        else:
            cmd.extend(["-xf", str(archive_path)])
        cmd.extend(["-C", staging, member])

        result = subprocess.run(  # noqa: S603 - controlled command
            cmd,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "tar extraction failed").strip()
            raise BackupArchiveError(
                f"Failed to extract {member} from {archive_path.name}: {message}"
            )

        extracted = Path(staging) / member
        try:
            data = json.loads(extracted.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise BackupArchiveError(f"{archive_path.name} does not contain {member}.") from None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise BackupArchiveError(
                f"{member} in {archive_path.name} is not valid JSON: {exc}"
            ) from exc

    if not isinstance(data, Mapping):
        raise BackupArchiveError(f"{member} in {archive_path.name} must contain a JSON object.")
    return dict(data)


def collect_component_versions(document: Mapping[str, object], title: str) -> list[str]:
    """Return ``installedVersion`` of every object whose ``common.title`` is *title*.

    Multihost backups carry one controller object per host, so several
    versions may be returned. A controller object without a usable version
    contributes an empty string so it still takes part in the comparison.
    """
    versions: list[str] = []
    for entry in _iter_objects(document.get("objects")):
        value = entry.get("value")
        if not isinstance(value, Mapping):
            continue
        common = value.get("common")
        if not isinstance(common, Mapping) or common.get("title") != title:
            continue
        version = common.get("installedVersion")
        versions.append(version.strip() if isinstance(version, str) else "")
    return versions


def _iter_objects(raw: object) -> Iterable[Mapping[str, object]]:
    if isinstance(raw, Mapping):
        raw = list(raw.values())
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


__all__ = [
    "BackupArchiveError",
    "collect_component_versions",
    "discover_backups",
    "infer_compression",
    "read_archive_member",
]
