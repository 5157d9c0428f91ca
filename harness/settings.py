# harness/settings.py
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from harness.schemas import FailureMode

BASE_DIR = Path(__file__).resolve().parent
REPO_ROOT = BASE_DIR.parent

# Load .env at the repo root
load_dotenv(REPO_ROOT / ".env")


class HarnessSettings(BaseModel):
    delay_ms: int = Field(default=800, ge=0)
    failure_mode: FailureMode = Field(default_factory=FailureMode.none)
    ttl_ms: int = Field(default=5 * 60 * 1000, gt=0)
    debounce_ms: int = Field(default=500, ge=0)
    page_size: int = Field(default=10, gt=0)
    seed: Optional[int] = None


def env_int(name: str, default: Optional[int]) -> Optional[int]:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    try:
        return int(val)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be an integer, got {val!r}")


def env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    try:
        return float(val)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be a number, got {val!r}")


def load_settings() -> HarnessSettings:
    """
    Read HARNESS_* env vars (after .env) into validated settings:
      HARNESS_DELAY_MS, HARNESS_FAILURE_MODE (none|always|probability),
      HARNESS_FAILURE_RATE, HARNESS_TTL_MS, HARNESS_DEBOUNCE_MS,
      HARNESS_PAGE_SIZE, HARNESS_SEED
    """
    kind = os.getenv("HARNESS_FAILURE_MODE", "none").strip().lower() or "none"
    rate = env_float("HARNESS_FAILURE_RATE", 0.0)
    try:
        if kind == "none":
            failure = FailureMode.none()
        elif kind == "always":
            failure = FailureMode.always()
        elif kind == "probability":
            failure = FailureMode.probability(rate)
        else:
            raise RuntimeError(f"Env var HARNESS_FAILURE_MODE must be none|always|probability, got {kind!r}")
    except ValidationError:
        raise RuntimeError(f"Env var HARNESS_FAILURE_RATE must be within [0, 1], got {rate}")

    values = {
        "delay_ms": env_int("HARNESS_DELAY_MS", 800),
        "failure_mode": failure,
        "ttl_ms": env_int("HARNESS_TTL_MS", 5 * 60 * 1000),
        "debounce_ms": env_int("HARNESS_DEBOUNCE_MS", 500),
        "page_size": env_int("HARNESS_PAGE_SIZE", 10),
        "seed": env_int("HARNESS_SEED", None),
    }
    try:
        return HarnessSettings(**values)
    except ValidationError as e:
        bad = ", ".join("HARNESS_" + str(err["loc"][0]).upper() for err in e.errors())
        raise RuntimeError(f"Invalid harness settings: {bad}") from e
