"""
Zemu Testing Framework - Snapshot Files
=======================================

Golden/candidate image sets and their comparison.

Layout, relative to the snapshots root:

    snapshots/<testcase>/00000.png       golden reference set (committed)
    snapshots-tmp/<testcase>/00000.png   candidate set written by this run

Index 0 is the screen before the first action; index i is the screen
after action i. Comparison decodes both PNGs with Pillow and requires
identical pixels for every index from 0 to the last one inclusive; the
first difference fails the comparison and names its index.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, UnidentifiedImageError

from zemu.emulator.api import Snapshot
from zemu.testkit.exceptions import SnapshotMismatchError, ZemuTestError

# Configure module logger
logger = logging.getLogger(__name__)


GOLDEN_DIR_NAME = "snapshots"
CANDIDATE_DIR_NAME = "snapshots-tmp"

PathLike = Union[str, Path]


def format_index(index: int) -> str:
    return f"{index:05d}"


def snapshot_dirs(root: PathLike, testcase: str) -> Tuple[Path, Path]:
    """
    Golden and candidate directories of ``testcase``.

    Returns:
        Tuple of (golden_dir, candidate_dir), absolute
    """
    root = Path(root).resolve()
    return root / GOLDEN_DIR_NAME / testcase, root / CANDIDATE_DIR_NAME / testcase


def snapshot_path(directory: PathLike, index: int) -> Path:
    return Path(directory) / f"{format_index(index)}.png"


def ensure_dirs(root: PathLike, testcase: str) -> Tuple[Path, Path]:
    """
    Create both directories of ``testcase``.

    Raises:
        OSError: If a directory cannot be created
    """
    golden, candidate = snapshot_dirs(root, testcase)
    golden.mkdir(parents=True, exist_ok=True)
    candidate.mkdir(parents=True, exist_ok=True)
    return golden, candidate


def save_snapshot(snapshot: Snapshot, path: PathLike) -> Path:
    """Write the PNG bytes of ``snapshot`` to ``path``."""
    path = Path(path)
    path.write_bytes(snapshot.data)
    return path


def load_pixels(path: PathLike) -> Tuple[Tuple[int, int], bytes]:
    """
    Decode a PNG into its size and RGBA pixel bytes.

    Raises:
        FileNotFoundError: If the file does not exist
        OSError: If the file is not a readable image
    """
    with Image.open(path) as image:
        return image.size, image.convert("RGBA").tobytes()


def compare_snapshots(golden_dir: PathLike, candidate_dir: PathLike, last_index: int) -> bool:
    """
    Compare images ``0..last_index`` (inclusive) of two directories.

    Returns:
        True when every pair has identical pixels

    Raises:
        SnapshotMismatchError: At the first missing, unreadable or different pair
    """
    logger.debug(f"golden      {golden_dir}")
    logger.debug(f"candidate   {candidate_dir}")

    for index in range(last_index + 1):
        golden = snapshot_path(golden_dir, index)
        candidate = snapshot_path(candidate_dir, index)
        logger.debug(f"Checked     {candidate}")

        try:
            candidate_pixels = load_pixels(candidate)
            golden_pixels = load_pixels(golden)
        except FileNotFoundError as e:
            raise SnapshotMismatchError(
                f"Image [{format_index(index)}] is missing: {e.filename}",
                index=index,
                golden=str(golden),
                candidate=str(candidate),
                reason="missing",
            ) from e
        except (UnidentifiedImageError, OSError) as e:
            raise SnapshotMismatchError(
                f"Image [{format_index(index)}] cannot be read: {e}",
                index=index,
                golden=str(golden),
                candidate=str(candidate),
                reason="unreadable",
            ) from e

        if candidate_pixels != golden_pixels:
            raise SnapshotMismatchError(
                f"Image [{format_index(index)}] do not match!",
                index=index,
                golden=str(golden),
                candidate=str(candidate),
                reason="pixels differ",
            )
    return True


def replace_snapshot(snapshot: Snapshot, path: PathLike) -> Path:
    """
    Overwrite an existing snapshot file.

    Raises:
        ZemuTestError: If there is no snapshot at ``path`` to overwrite
    """
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        raise ZemuTestError(f"Snapshot does not exist: {path}", {"path": str(path)}) from None
    return save_snapshot(snapshot, path)
