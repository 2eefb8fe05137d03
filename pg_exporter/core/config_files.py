"""Reading the JSON configuration files named by DBS_CONFIG_FILE / QUERIES_FILE.

Both files share the same outer contract: the path must exist, be a
regular file, parse as JSON, and hold a top-level list.  Anything else is
a ConfigurationError, which aborts startup.
"""

from __future__ import annotations

import json
from pathlib import Path

from pg_exporter.core.errors import ConfigurationError


def read_json_list(path: str | Path, what: str) -> list:
    """Load ``path`` and return its top-level JSON list.

    ``what`` names the file in error messages ("databases file").
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"{what} not found at {file_path}")
    if not file_path.is_file():
        raise ConfigurationError(f"{what} path is not a file: {file_path}")

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"failed to read {what} {file_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"failed to parse {what} {file_path}: {exc}") from exc

    if not isinstance(data, list):
        raise ConfigurationError(f"{what} {file_path} must contain a JSON array")
    return data
