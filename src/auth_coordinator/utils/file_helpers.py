"""File helpers for JSON-backed configuration and state files."""

from __future__ import annotations

__all__ = [
    "atomic_write_text",
    "load_validated_json",
    "require_file_exists",
]

import json
import os
import tempfile
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def require_file_exists(path: Path, *, file_type: str = "file") -> None:
    """Raise FileNotFoundError with a readable message if path is missing.

    Args:
        path: Path that must exist.
        file_type: Human-readable file kind for the error message.

    Raises:
        FileNotFoundError: If path does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"{file_type.capitalize()} file not found at {path}")


def load_validated_json(
    path: Path,
    model: type[ModelT],
    *,
    file_type: str,
    recovery_hint: str | None = None,
    encoding: str = "utf-8",
) -> ModelT:
    """Load a JSON file and validate it against a pydantic model.

    Args:
        path: JSON file to read.
        model: Model class to validate against.
        file_type: Human-readable file kind for error messages.
        recovery_hint: Appended to error messages (e.g. how to regenerate).
        encoding: File encoding.

    Returns:
        Validated model instance.

    Raises:
        ValueError: If the file is not valid JSON or fails validation.
    """
    hint = f" {recovery_hint}" if recovery_hint else ""
    try:
        data = json.loads(path.read_text(encoding=encoding))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {path}: {e}.{hint}") from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ValueError(f"Invalid {file_type} file {path}: {errors}.{hint}") from e


def atomic_write_text(path: Path, content: str, *, mode: int = 0o600, encoding: str = "utf-8") -> None:
    """Write content to path atomically with restrictive permissions.

    The content is written to a temporary file in the same directory and
    renamed over the target, so readers never see a partial file.

    Args:
        path: Destination file.
        content: Text to write.
        mode: Permission bits for the final file.
        encoding: File encoding.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
