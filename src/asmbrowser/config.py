"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3721
DEFAULT_ILSPYCMD = "ilspycmd"


@dataclass(slots=True)
class AppConfig:
    upload_dir: Path | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    ilspycmd: str = DEFAULT_ILSPYCMD
    decompile_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.upload_dir is None:
            self.upload_dir = Path("uploads")

    def resolve_upload_dir(self, base_dir: Path | None = None) -> Path:
        if self.upload_dir is None:
            self.upload_dir = Path("uploads")
        upload_dir = Path(self.upload_dir).expanduser()
        if upload_dir.is_absolute() or base_dir is None:
            return upload_dir
        return base_dir / upload_dir
