from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os

from dotenv import load_dotenv


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _parse_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc


def load_env() -> Optional[Path]:
    env_file = os.environ.get("SHEETSCAN_ENV_FILE")
    if not env_file:
        return None

    path = Path(env_file)
    if not path.is_absolute():
        repo_root = Path(__file__).resolve().parents[1]
        path = repo_root / env_file

    if not path.exists():
        raise RuntimeError(f"SHEETSCAN_ENV_FILE not found: {path}")

    load_dotenv(path)
    return path


@dataclass(frozen=True)
class Settings:
    mode: str
    port: int
    # Mean luminance below this counts as a filled bubble (0..255).
    filled_threshold: float
    cooldown_seconds: float
    frame_interval: float
    camera_index: int
    # Target for the fiducial's top-left corner, as ratios of frame width/height.
    align_target_x: float
    align_target_y: float
    # Tolerance as a ratio of min(frame width, frame height).
    align_tolerance: float
    max_distortion: float
    max_alternatives: int


def load_settings() -> Settings:
    load_env()
    mode = _env("SHEETSCAN_MODE") or "local"
    if mode not in ("local", "docker"):
        raise RuntimeError("SHEETSCAN_MODE must be 'local' or 'docker'.")

    max_alternatives = _parse_int("SHEETSCAN_MAX_ALTERNATIVES", 4)
    if not 2 <= max_alternatives <= 5:
        raise RuntimeError("SHEETSCAN_MAX_ALTERNATIVES must be between 2 and 5.")

    return Settings(
        mode=mode,
        port=_parse_int("SHEETSCAN_PORT", 8010),
        filled_threshold=_parse_float("SHEETSCAN_FILLED_THRESHOLD", 120.0),
        cooldown_seconds=_parse_float("SHEETSCAN_COOLDOWN_SECONDS", 4.0),
        frame_interval=_parse_float("SHEETSCAN_FRAME_INTERVAL", 1.0 / 30.0),
        camera_index=_parse_int("SHEETSCAN_CAMERA_INDEX", 0),
        align_target_x=_parse_float("SHEETSCAN_ALIGN_TARGET_X", 0.95),
        align_target_y=_parse_float("SHEETSCAN_ALIGN_TARGET_Y", 0.05),
        align_tolerance=_parse_float("SHEETSCAN_ALIGN_TOLERANCE", 0.05),
        max_distortion=_parse_float("SHEETSCAN_MAX_DISTORTION", 0.2),
        max_alternatives=max_alternatives,
    )


SETTINGS = load_settings()
