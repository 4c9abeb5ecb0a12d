"""Write artifacts to a staging directory and publish them atomically."""

from __future__ import annotations

import logging
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .cache import load_lock, write_lock
from .emitters import Artifact
from .errors import ConfigError, OutputError

logger = logging.getLogger(__name__)


def check_output_dir(output_dir: Path, project_root: Path, content_dir: Path) -> None:
    """Refuse output locations that replacing would destroy sources."""
    output_resolved = output_dir.resolve()
    root_resolved = project_root.resolve()
    if output_resolved == root_resolved:
        raise ConfigError("Refusing to use the project root as the output directory.")
    content_resolved = content_dir.resolve()
    if content_resolved == output_resolved or content_resolved.is_relative_to(output_resolved):
        raise ConfigError(f"Refusing to replace {output_dir}: it contains the content directory.")
    if output_dir.exists() and not output_dir.is_dir():
        raise ConfigError(f"Output path exists and is not a directory: {output_dir}")


def build_manifest(artifacts: list[Artifact]) -> dict[str, str]:
    manifest = {}
    for artifact in artifacts:
        try:
            manifest[artifact.path] = artifact.digest()
        except OSError as exc:
            raise OutputError(str(artifact.source), str(exc)) from exc
    return manifest


def is_unchanged(output_dir: Path, lock_path: Path, manifest: dict[str, str]) -> bool:
    if not output_dir.is_dir():
        return False
    previous = load_lock(lock_path)
    return bool(previous) and previous.get("artifacts") == manifest


def write_artifact(root: Path, artifact: Artifact) -> None:
    dest = root / artifact.path
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if artifact.content is not None:
            dest.write_bytes(artifact.content)
        else:
            shutil.copyfile(artifact.source, dest)
    except OSError as exc:
        raise OutputError(artifact.path, str(exc)) from exc


def write_artifacts(root: Path, artifacts: list[Artifact], workers: int = 1) -> None:
    workers = min(workers, len(artifacts)) if artifacts else 1
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            list(executor.map(lambda artifact: write_artifact(root, artifact), artifacts))
    else:
        for artifact in artifacts:
            write_artifact(root, artifact)


def swap_into_place(staging: Path, output_dir: Path) -> None:
    backup = None
    if output_dir.exists():
        backup = staging.with_name(f"{staging.name}.previous")
        try:
            output_dir.rename(backup)
        except OSError as exc:
            raise OutputError(str(output_dir), str(exc)) from exc
    try:
        staging.rename(output_dir)
    except BaseException as exc:
        if backup is not None and not output_dir.exists():
            backup.rename(output_dir)
        if isinstance(exc, OSError):
            raise OutputError(str(output_dir), str(exc)) from exc
        raise
    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)


def publish(
    artifacts: list[Artifact],
    output_dir: Path,
    *,
    lock_path: Path,
    incremental: bool = True,
    workers: int = 1,
) -> bool:
    """Replace ``output_dir`` with exactly ``artifacts``.

    Returns False when the previous build already published the same bytes.
    """
    manifest = build_manifest(artifacts)
    if incremental and is_unchanged(output_dir, lock_path, manifest):
        logger.info("No changes detected. Publish skipped.")
        return False

    parent = output_dir.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}.staging-", dir=parent))
    except OSError as exc:
        raise OutputError(str(parent), str(exc)) from exc

    try:
        write_artifacts(staging, artifacts, workers)
        swap_into_place(staging, output_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    try:
        write_lock(lock_path, manifest)
    except OSError as exc:
        raise OutputError(str(lock_path), str(exc)) from exc
    logger.info("Published %d artifacts to %s", len(artifacts), output_dir)
    return True
