"""Markdown I/O for persistent records: YAML frontmatter plus a text body.

Every record lives in its own ``<id>.md`` file. Stores pick which field is
written as the markdown body (a reminder's note, an alarm's title, ...); every
other field goes into the frontmatter.
"""

import dataclasses
import logging
import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, TypeVar

import yaml

from routinely.config import DATA_ROOT
from routinely.config import TZ as TZ

DATA_DIR = DATA_ROOT

T = TypeVar("T")
log = logging.getLogger(__name__)


def _defaults(cls: type) -> dict[str, Any]:
    fields = dataclasses.fields(cls)
    defaults = {f.name: f.default for f in fields if f.default is not dataclasses.MISSING}
    defaults.update(
        {f.name: f.default_factory() for f in fields if f.default_factory is not dataclasses.MISSING}
    )
    return defaults


def _serialize_md(item: Any, body_field: str) -> str:
    """Build YAML frontmatter + markdown body, omitting fields left at their default."""
    data = asdict(item)
    body = data.pop(body_field) or ""
    defaults = _defaults(type(item))
    front = {k: v for k, v in data.items() if not (k in defaults and v == defaults[k])}
    frontmatter = yaml.safe_dump(front, sort_keys=False, allow_unicode=True)
    return f"---\n{frontmatter}---\n{body}\n"


def _parse_md(text: str, cls: type[T], body_field: str) -> T:
    """Parse a single markdown file with YAML frontmatter into a dataclass."""
    parts = text.split("---", 2)
    if len(parts) < 3:
        raise ValueError("Missing YAML frontmatter delimiters")
    data = yaml.safe_load(parts[1])
    if not isinstance(data, dict):
        raise ValueError("YAML frontmatter is not a mapping")

    names = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    filtered = {k: v for k, v in data.items() if k in names}
    filtered[body_field] = parts[2].strip()
    return cls(**filtered)


def _path(dir_path: Path, item_id: str) -> Path:
    return dir_path / f"{item_id}.md"


def read_md(dir_path: Path, item_id: str, cls: type[T], body_field: str = "message") -> T | None:
    filepath = _path(dir_path, item_id)
    if not filepath.exists():
        return None
    try:
        return _parse_md(filepath.read_text(), cls, body_field)
    except (ValueError, yaml.YAMLError, TypeError, KeyError):
        log.warning("Skipping corrupt file: %s", filepath)
        return None


def read_md_dir(dir_path: Path, cls: type[T], body_field: str = "message") -> list[T]:
    """Read all .md files in a directory into dataclass instances."""
    if not dir_path.is_dir():
        return []
    result: list[T] = []
    for filepath in sorted(dir_path.glob("*.md")):
        try:
            result.append(_parse_md(filepath.read_text(), cls, body_field))
        except (ValueError, yaml.YAMLError, TypeError, KeyError):
            log.warning("Skipping corrupt file: %s", filepath)
    return result


def write_md(dir_path: Path, item: Any, body_field: str = "message") -> None:
    """Create or overwrite ``<id>.md``. Atomic write."""
    dir_path.mkdir(parents=True, exist_ok=True)
    content = _serialize_md(item, body_field)
    fd, tmp = tempfile.mkstemp(dir=dir_path, suffix=".tmp")
    try:
        os.write(fd, content.encode())
    finally:
        os.close(fd)
    os.replace(tmp, _path(dir_path, item.id))


def remove_md(dir_path: Path, item_id: str) -> bool:
    filepath = _path(dir_path, item_id)
    if not filepath.exists():
        return False
    filepath.unlink()
    return True
