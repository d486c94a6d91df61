"""
Game Site Publisher - Upload Bundling
=====================================

Turns the files a user uploads into a single deployable bundle:
- Validates that the upload contains an index.html (directly or inside a ZIP)
- Merges ZIP archives and loose files into one deployment ZIP
- Strips the single wrapping folder most archive tools add
- Extracts the bundle to a scratch directory for per-file upload
"""

import io
import logging
import re
import time
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, List, Optional, Tuple

from errors import BundleError, UploadTooLargeError
from models import UploadedAsset

logger = logging.getLogger(__name__)

# macOS Finder adds these to every archive it creates
IGNORED_PREFIXES = ("__MACOSX/",)


# ============================================================================
# NAMING
# ============================================================================
def default_game_name(now: Optional[float] = None) -> str:
    """Name used when the user did not provide one: game-<epoch millis>."""
    if now is None:
        now = time.time()
    return f"game-{int(now * 1000)}"


def repo_name_for(game_name: str) -> str:
    """
    Derive a repository/site name from a display name.

    Lower-cases the name and replaces every character outside [a-z0-9-]
    with a dash, so "My Game!" becomes "my-game-".
    """
    return re.sub(r"[^a-z0-9-]", "-", game_name.lower())


# ============================================================================
# VALIDATION
# ============================================================================
def is_index_path(path: str) -> bool:
    return path == "index.html" or path.endswith("/index.html")


def is_zip(asset: UploadedAsset) -> bool:
    return asset.filename.lower().endswith(".zip")


def _zip_names(asset: UploadedAsset) -> List[str]:
    try:
        with zipfile.ZipFile(io.BytesIO(asset.content)) as archive:
            return archive.namelist()
    except zipfile.BadZipFile as e:
        raise BundleError("Failed to process ZIP file", details=f"{asset.filename}: {e}") from e


def check_sizes(assets: Iterable[UploadedAsset], limit: int) -> None:
    for asset in assets:
        if asset.size > limit:
            raise UploadTooLargeError(
                "File too large",
                details=f"{asset.filename} is {asset.size} bytes (limit {limit} bytes)",
            )


def validate_upload(assets: List[UploadedAsset]) -> None:
    """
    Check that the upload can become a site.

    A loose index.html is always enough. Without one, at least one of the
    uploaded ZIP archives must contain an index.html at any depth.

    Args:
        assets: Uploaded files

    Raises:
        BundleError: If there are no files, a ZIP is unreadable, or no
            index.html can be found
    """
    if not assets:
        raise BundleError("No files uploaded")

    zip_assets = [asset for asset in assets if is_zip(asset)]
    has_index_html = any(is_index_path(asset.filename) for asset in assets if not is_zip(asset))
    logger.info("Has index.html: %s, ZIP files: %d", has_index_html, len(zip_assets))

    zip_has_index_html = False
    for asset in zip_assets:
        # Every archive must be readable even when the index comes from elsewhere
        names = _zip_names(asset)
        if any(is_index_path(name) for name in names):
            zip_has_index_html = True

    if has_index_html or zip_has_index_html:
        return
    if zip_assets:
        raise BundleError("ZIP archive must contain an index.html file")
    raise BundleError("Upload must include an index.html file or a ZIP archive containing one")


# ============================================================================
# REPACKAGING
# ============================================================================
def _clean_member_name(name: str) -> str:
    """Normalize an archive or upload path, rejecting traversal."""
    cleaned = name.replace("\\", "/").lstrip("/")
    parts = PurePosixPath(cleaned).parts
    if ".." in parts:
        raise BundleError("Invalid file path", details=f"Path traversal in {name!r}")
    return "/".join(part for part in parts if part not in ("", "."))


def _is_ignored(name: str) -> bool:
    return name.startswith(IGNORED_PREFIXES)


def common_root(names: Iterable[str]) -> str:
    """
    Return the single top-level directory wrapping every file, with a
    trailing slash, or "" when files are not all under one directory.

    Args:
        names: Archive member names of files (no directory entries)
    """
    roots = set()
    for name in names:
        if _is_ignored(name):
            continue
        if "/" not in name:
            return ""
        roots.add(name.split("/", 1)[0])
    if len(roots) == 1:
        return roots.pop() + "/"
    return ""


def build_deployment_zip(assets: List[UploadedAsset]) -> bytes:
    """
    Merge all uploaded files into one deployment ZIP.

    ZIP archives are unpacked into the bundle with their wrapping folder
    stripped; loose files are added under their own name. A later file with
    the same path replaces an earlier one.

    Args:
        assets: Validated upload

    Returns:
        bytes: DEFLATE-compressed ZIP archive
    """
    logger.info("Starting ZIP creation for %d uploaded file(s)", len(assets))
    entries = {}

    for asset in assets:
        logger.info("Processing %s (%d bytes, %s)", asset.filename, asset.size, asset.content_type)
        if is_zip(asset):
            with zipfile.ZipFile(io.BytesIO(asset.content)) as archive:
                members = [info for info in archive.infolist() if not info.is_dir()]
                prefix = common_root(info.filename for info in members)
                if prefix:
                    logger.info("Stripping prefix: %s", prefix)
                for info in members:
                    if _is_ignored(info.filename):
                        continue
                    path = info.filename[len(prefix):] if prefix else info.filename
                    path = _clean_member_name(path)
                    if not path:
                        continue
                    entries[path] = archive.read(info)
                    logger.debug("Added file to deployment: %s (%d bytes)", path, len(entries[path]))
        else:
            path = _clean_member_name(asset.filename)
            if not path:
                raise BundleError("Invalid file path", details=f"Empty filename for {asset.filename!r}")
            entries[path] = asset.content
            logger.debug("Added file to deployment: %s (%d bytes)", path, asset.size)

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as bundle:
        for path, content in entries.items():
            bundle.writestr(path, content)

    data = buffer.getvalue()
    logger.info("Final deployment ZIP: %d file(s), %d bytes", len(entries), len(data))
    logger.debug("Deployment ZIP contents: %s", sorted(entries))
    return data


def extract_bundle(zip_bytes: bytes, dest: Path) -> None:
    """
    Extract a deployment ZIP into dest.

    Raises:
        BundleError: If any member would land outside dest
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    with zipfile.ZipFile(io.BytesIO(zip_bytes)) as archive:
        for name in archive.namelist():
            if name.startswith("/") or PurePosixPath(name).is_absolute():
                raise BundleError("Invalid file path", details=f"Absolute path {name!r} in bundle")
            target = (root / name).resolve()
            if root != target and root not in target.parents:
                raise BundleError("Invalid file path", details=f"Path traversal in {name!r}")
        archive.extractall(root)


def iter_bundle_files(root: Path) -> Iterator[Tuple[str, Path]]:
    """Yield (repository path, local path) for every file under root, sorted."""
    root = Path(root)
    for path in sorted(root.rglob("*")):
        if path.is_file():
            yield path.relative_to(root).as_posix(), path
