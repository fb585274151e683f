#!/usr/bin/env python3
"""
Project Archive Extractor

Unpacks the src/ portion of an uploaded NestJS project zip into a working
directory. Entries under auth/ or user/ directories are dropped because they
hold framework-generated boilerplate the checker does not evaluate.
"""

import io
import logging
import os
import shutil
import zipfile
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from permcheck.exceptions import ArchiveExtractionError

logger = logging.getLogger(__name__)

SOURCE_ROOT = 'src'
CONTROLLER_SUFFIX = '.controller.ts'
DEFAULT_EXCLUDED_DIRS = ('auth', 'user')
ARCHIVE_METADATA_DIRS = ('__MACOSX',)


@dataclass
class ExtractionResult:
    """Result of extracting a project archive"""
    extract_path: str
    written_files: List[str] = field(default_factory=list)
    controller_files: List[str] = field(default_factory=list)
    skipped_entries: int = 0

    @property
    def source_dir(self) -> str:
        return os.path.join(self.extract_path, SOURCE_ROOT)


def extract_project_archive(zip_bytes: bytes,
                            extract_path: str,
                            excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS) -> ExtractionResult:
    """
    Extract the filtered src/ tree of a project archive

    Any existing directory at extract_path is removed first. Directory
    entries are created before file entries.

    Args:
        zip_bytes: Compressed project archive
        extract_path: Target directory (recreated on every call)
        excluded_dirs: Directory names under src/ whose entries are dropped

    Returns:
        ExtractionResult with written files and controller files in entry order

    Raises:
        ArchiveExtractionError: If the archive is corrupt or an entry cannot be written
    """
    excluded = set(excluded_dirs)

    try:
        archive = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as e:
        raise ArchiveExtractionError(f"Project archive is not a valid zip file: {e}") from e

    with archive:
        infos = archive.infolist()
        prefix = _detect_wrapper_prefix([info.filename for info in infos])
        if prefix:
            logger.debug(f"[EXTRACTOR] Stripping wrapper directory '{prefix}'")

        directories: List[Tuple[str, zipfile.ZipInfo]] = []
        files: List[Tuple[str, zipfile.ZipInfo]] = []
        skipped = 0

        for info in infos:
            relative = _relative_entry_name(info.filename, prefix)
            if relative is None or not is_source_entry(relative, info.is_dir(), excluded):
                skipped += 1
                continue
            if info.is_dir():
                directories.append((relative, info))
            else:
                files.append((relative, info))

        result = ExtractionResult(extract_path=extract_path, skipped_entries=skipped)

        try:
            if os.path.exists(extract_path):
                shutil.rmtree(extract_path)
            os.makedirs(extract_path, exist_ok=True)
            root = os.path.realpath(extract_path)

            for relative, _ in directories:
                os.makedirs(_safe_target(root, relative), exist_ok=True)

            for relative, info in files:
                target = _safe_target(root, relative)
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(target, 'wb') as f:
                    f.write(archive.read(info))

                result.written_files.append(target)
                if relative.endswith(CONTROLLER_SUFFIX):
                    result.controller_files.append(target)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise ArchiveExtractionError(f"Failed to extract project archive: {e}") from e

    logger.info(
        f"[EXTRACTOR] Extracted {len(result.written_files)} files "
        f"({len(result.controller_files)} controllers, {skipped} entries skipped) to {extract_path}"
    )
    return result


def is_source_entry(relative: str, is_dir: bool, excluded_dirs: Iterable[str]) -> bool:
    """
    Check whether an archive entry belongs to the analyzed source tree

    Keeps src/ and everything beneath it, except entries inside an excluded
    directory at any depth under src/.
    """
    parts = [p for p in relative.split('/') if p]
    if not parts or parts[0] != SOURCE_ROOT:
        return False
    if not is_dir and parts[-1].startswith('._'):
        return False

    # Directory names only; a file literally called "user" is kept
    dir_parts = parts[1:] if is_dir else parts[1:-1]
    excluded = set(excluded_dirs)
    return not any(part in excluded for part in dir_parts)


def _detect_wrapper_prefix(names: List[str]) -> str:
    """
    Return 'wrapper/' when every entry sits under one directory that holds src/

    Zips built from a parent folder look like my-project/src/...; zips built
    inside the project look like src/...
    """
    normalized = [n.replace('\\', '/') for n in names if n]
    if any(n == SOURCE_ROOT or n.startswith(SOURCE_ROOT + '/') for n in normalized):
        return ''

    # Finder adds __MACOSX/ and ._ resource forks next to the real folder
    first_parts = {
        n.split('/', 1)[0] for n in normalized
        if n.split('/', 1)[0] not in ARCHIVE_METADATA_DIRS and not n.startswith('.')
    }
    if len(first_parts) != 1:
        return ''

    wrapper = first_parts.pop() + '/'
    if any(n.startswith(wrapper + SOURCE_ROOT + '/') for n in normalized):
        return wrapper
    return ''


def _relative_entry_name(name: str, prefix: str) -> Optional[str]:
    name = name.replace('\\', '/')
    if prefix:
        if not name.startswith(prefix):
            return None
        name = name[len(prefix):]
    return name or None


def _safe_target(root: str, relative: str) -> str:
    """Resolve an entry path and refuse anything that escapes the extraction root"""
    target = os.path.realpath(os.path.join(root, relative))
    if target != root and not target.startswith(root + os.sep):
        raise ArchiveExtractionError(f"Archive entry escapes extraction directory: {relative}")
    return target
