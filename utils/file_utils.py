"""
File Utilities

Common file operations for snapshot persistence including
JSON reading, atomic writing and path management.
"""

import os
import json
import tempfile
from pathlib import Path
from typing import Dict, Any


class FileUtils:
    """Utility class for common file operations."""

    @staticmethod
    def ensure_directory(path: str) -> None:
        """Ensure directory exists, create if it doesn't."""
        if path:
            Path(path).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def read_json(file_path: str) -> Dict[str, Any]:
        """Read JSON file as dictionary."""
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    @staticmethod
    def write_json(file_path: str, data: Dict[str, Any]) -> None:
        """
        Write dictionary to JSON file.

        The document is written to a temporary file in the same directory
        and moved into place, so readers never observe a partial snapshot.
        """
        directory = os.path.dirname(os.path.abspath(file_path))
        FileUtils.ensure_directory(directory)

        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @staticmethod
    def file_exists(file_path: str) -> bool:
        """Check if file exists."""
        return os.path.isfile(file_path)


# Convenience functions
def ensure_directory(path: str) -> None:
    """Ensure directory exists, create if it doesn't."""
    FileUtils.ensure_directory(path)


def read_json(file_path: str) -> Dict[str, Any]:
    """Read a JSON snapshot."""
    return FileUtils.read_json(file_path)


def write_json(file_path: str, data: Dict[str, Any]) -> None:
    """Write a JSON snapshot atomically."""
    FileUtils.write_json(file_path, data)
