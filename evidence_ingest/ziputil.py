from __future__ import annotations

import logging
import os
import shutil
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)


def unzip(source: str | Path, destination: str | Path) -> Path:
    """Extract an archive, rejecting members that escape the destination."""
    destination = Path(destination).resolve()
    destination.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(source) as archive:
        for member in archive.infolist():
            target = (destination / member.filename).resolve()
            if target != destination and destination not in target.parents:
                raise ValueError(f"illegal file path: {member.filename}")

            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)

    return destination


def zip_directory(directory: str | Path, archive_path: str | Path) -> Path:
    """Zip every file below directory; member names keep the directory name."""
    directory = Path(directory)
    archive_path = Path(archive_path)
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for root, _dirs, files in os.walk(directory):
            for name in sorted(files):
                path = Path(root) / name
                archive.write(path, arcname=str(path.relative_to(directory.parent)))
    logger.debug("Zipped %s into %s", directory, archive_path)
    return archive_path
