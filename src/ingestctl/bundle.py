"""
Deployment package download.

``ingestctl bootstrap`` exchanges the setup token for a signed package URL,
downloads the tarball and unpacks it. The package carries the Terraform
root module that setup deploys.
"""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path
from typing import Optional

import httpx

from ingestctl.errors import UserInputError
from ingestctl.timeouts import HTTP_DOWNLOAD_TIMEOUT_S

logger = logging.getLogger(__name__)

PACKAGE_FILENAME = "corco-installer.tar.gz"


def download_package(
    url: str,
    dest_dir: Path,
    transport: Optional[httpx.BaseTransport] = None,
) -> Path:
    """Stream the package into ``dest_dir`` and return the archive path."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    archive = dest_dir / PACKAGE_FILENAME
    try:
        with httpx.Client(timeout=HTTP_DOWNLOAD_TIMEOUT_S, transport=transport, follow_redirects=True) as client:
            with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise UserInputError(f"Package download failed (HTTP {response.status_code})")
                with open(archive, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
    except httpx.HTTPError as e:
        raise UserInputError(f"Package download failed: {e}") from e
    logger.info("Downloaded package to %s", archive)
    return archive


def extract_package(archive: Path, dest_dir: Path) -> Path:
    """
    Unpack ``archive`` into ``dest_dir``.

    Members that would land outside ``dest_dir`` (absolute paths, ``..``,
    links) are rejected.
    """
    root = dest_dir.resolve()
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                target = (root / member.name).resolve()
                if member.issym() or member.islnk() or (target != root and root not in target.parents):
                    raise UserInputError(f"Refusing to extract unsafe package member: {member.name}")
            tar.extractall(root, members=members)
    except tarfile.TarError as e:
        raise UserInputError(f"Package is not a valid archive: {e}") from e
    return root


def find_terraform_dir(root: Path) -> Optional[Path]:
    """Locate the Terraform root module inside an unpacked package."""
    for candidate in (root / "deployment" / "terraform", root / "terraform"):
        if candidate.is_dir():
            return candidate
    for path in sorted(root.rglob("main.tf")):
        return path.parent
    return None
