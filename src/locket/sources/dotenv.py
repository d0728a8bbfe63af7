"""Secrets from a ``KEY=value`` dotenv file.

Parsing rules:
- blank lines and lines starting with ``#`` are skipped
- a trailing `` #`` comment is removed
- matching surrounding quotes are removed from values
- ``\\n``, ``\\"`` and ``\\\\`` escapes (as written by ``marshal_dotenv``) are restored
- any other line without ``=`` is an error
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from locket.errors import SourceError
from locket.observability import get_logger
from locket.sources.base import Secrets, group_by_service

logger = get_logger(__name__)

DELIMITER = "="
DOTENV_SUFFIX = ".env"

_ESCAPE = re.compile(r'\\(["n\\])')
_UNESCAPED = {"n": "\n"}


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return _ESCAPE.sub(lambda m: _UNESCAPED.get(m.group(1), m.group(1)), value)


def parse_dotenv(text: str, source_name: str = "<string>") -> dict[str, str]:
    """Parse dotenv text into a flat mapping.

    Raises:
        SourceError: On a non-comment line without a delimiter
    """
    values: dict[str, str] = {}
    for line_num, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        comment_at = line.find(" #")
        if comment_at != -1:
            line = line[:comment_at].strip()
        key, sep, value = line.partition(DELIMITER)
        key = key.strip()
        if not sep or not key:
            # The line itself may hold a secret; report its position only.
            raise SourceError(
                "dotenv",
                f"invalid line {line_num} in {source_name}",
                details={"line": line_num, "file": source_name},
            )
        values[key] = _unquote(value.strip())
    return values


def marshal_dotenv(values: Mapping[str, str]) -> str:
    """Format values as ``KEY="value"`` lines for dotenv and systemd environment files.

    Backslashes, newlines and double quotes are escaped, so multi-line PEM keys fit on one line.
    """
    lines = []
    for key, value in values.items():
        escaped = value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')
        lines.append(f'{key}="{escaped}"\n')
    return "".join(lines)


class Dotenv:
    """Load secrets from one dotenv file.

    Args:
        path: The dotenv file.
        services: Service identities to group by ``<SERVICE>_`` prefix. If
            empty, all values go under the file's stem (``foo-db.env`` is
            service ``foo-db``).
    """

    def __init__(self, path: str | Path, services: Sequence[str] = ()) -> None:
        self.path = Path(path)
        self.services = list(services)

    def load(self) -> Secrets:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SourceError(
                "dotenv",
                f"cannot read {self.path}: {e.strerror or e}",
                details={"file": str(self.path)},
            ) from e
        except UnicodeDecodeError as e:
            raise SourceError(
                "dotenv",
                f"cannot read {self.path}: not valid UTF-8",
                details={"file": str(self.path)},
            ) from e
        values = parse_dotenv(text, source_name=str(self.path))
        logger.debug("locket.source.dotenv_loaded", file=str(self.path), count=len(values))
        if not self.services:
            service = self.path.name
            if service.endswith(DOTENV_SUFFIX) and service != DOTENV_SUFFIX:
                service = service[: -len(DOTENV_SUFFIX)]
            return {service: values}
        return group_by_service(values, self.services)
