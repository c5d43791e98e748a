from __future__ import annotations

import secrets
import string
from pathlib import Path

from unlustig.domain.media import MediaFormat
from unlustig.utils.logging import get_logger

log = get_logger(__name__)

_ALPHABET = string.ascii_letters + string.digits


def random_name(length: int = 5) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def output_file_name(name: str, media_format: MediaFormat) -> str:
    if Path(name).suffix.lower() == media_format.extension:
        return name
    return f"{name}{media_format.extension}"


def resolve_output_path(
    directory: str | Path,
    name: str,
    media_format: MediaFormat,
    *,
    overwrite: bool = False,
    input_path: str | Path | None = None,
) -> Path:
    """
    Destination for the captioned file.

    An existing file is replaced only with `overwrite`; otherwise a random
    prefix is added. The input file is never chosen as the destination.
    """
    root = Path(directory).expanduser().resolve()
    file_name = output_file_name(name, media_format)
    candidate = root / file_name
    source = Path(input_path).expanduser().resolve() if input_path is not None else None

    def _taken(path: Path) -> bool:
        if source is not None and path == source:
            return True
        return path.exists() and not overwrite

    if not _taken(candidate):
        if candidate.exists():
            log.info("Overwrite is enabled; %s will be replaced.", candidate)
        return candidate

    log.warning("Output %s already exists; adding a random prefix.", candidate)
    while True:
        renamed = root / f"{random_name()}_{file_name}"
        if not renamed.exists():
            return renamed
