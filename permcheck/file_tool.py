#!/usr/bin/env python3
"""
File System Tool - Filesystem utilities for extracted project analysis

Walks and reads the extracted NestJS source tree. Everything here is
independent of TypeScript parsing.
"""

import logging
import os
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class FileTool:
    """Filesystem utilities for project analysis"""

    # Directories to skip during scanning
    SKIP_DIRS = {
        'node_modules', '.git', 'dist', 'build', 'coverage', '.idea', '.vscode',
    }

    SOURCE_EXTENSIONS = ('.ts',)

    def __init__(self, project_dir: str):
        """
        Initialize the File Tool

        Args:
            project_dir: Root of the extracted project
        """
        self.project_dir = project_dir

    def walk_source_files(self) -> List[str]:
        """
        List TypeScript source files under the project, sorted for stable output

        Declaration files (*.d.ts) and spec files are ignored.
        """
        results = []
        for root, dirs, files in os.walk(self.project_dir):
            # Skip common non-source directories
            dirs[:] = sorted(d for d in dirs if d not in self.SKIP_DIRS)

            for file in sorted(files):
                if not file.endswith(self.SOURCE_EXTENSIONS):
                    continue
                if file.endswith('.d.ts') or file.endswith('.spec.ts'):
                    continue
                results.append(os.path.join(root, file))

        return results

    def find_files_matching(self, predicate: Callable[[str], bool], max_results: int = 500) -> List[str]:
        """Find source files whose basename satisfies predicate"""
        results = []
        for full_path in self.walk_source_files():
            if len(results) >= max_results:
                break
            if predicate(os.path.basename(full_path)):
                results.append(full_path)
        return results

    def read_file(self, path: str) -> Optional[str]:
        """Read a file's contents; None if missing or unreadable"""
        full_path = self._full_path(path)
        if not os.path.isfile(full_path):
            return None

        try:
            with open(full_path, 'r', encoding='utf-8', errors='ignore') as f:
                return f.read()
        except OSError as e:
            logger.warning(f"[FILE TOOL] Could not read {full_path}: {e}")
            return None

    def relative_path(self, path: str) -> str:
        return os.path.relpath(self._full_path(path), self.project_dir)

    def _full_path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.project_dir, path)
