"""Load the user profile and env configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from job_applier.errors import PreflightError
from job_applier.log import get_logger
from job_applier.models import Profile

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
PROFILE_PATH: Path = CONFIG_DIR / "profile.yaml"
DATA_DIR: Path = ROOT_DIR / "data"

DEFAULT_MODEL = "gpt-3.5-turbo"


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _float_env(key: str, default: float) -> float:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring non-numeric %s=%r, using %s", key, raw, default)
        return default


def profile_path() -> Path:
    override = get_env("APPLIER_PROFILE")
    return Path(override) if override else PROFILE_PATH


def load_profile(path: Path | None = None) -> dict[str, Any]:
    """Read the YAML profile; a missing file is an empty profile."""
    path = path or profile_path()
    if not path.exists():
        log.debug("No profile at %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    # cv may live in a separate text file next to the profile
    if not data.get("cv") and data.get("cv_path"):
        cv_file = Path(data["cv_path"])
        if not cv_file.is_absolute():
            cv_file = path.parent / cv_file
        try:
            data["cv"] = cv_file.read_text(encoding="utf-8")
        except OSError as exc:
            log.warning("Could not read cv_path %s: %s", cv_file, exc)

    if isinstance(data.get("keywords"), list):
        data["keywords"] = " ".join(str(k) for k in data["keywords"])
    return data


@dataclass
class Settings:
    keywords: str = ""
    criteria: str = ""
    cv: str = ""
    name: str = ""
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_model: str = DEFAULT_MODEL
    state_path: Path = DATA_DIR / "state.json"
    settle_seconds: float = 1.0
    page_timeout: float = 10.0
    headless: bool = True

    @classmethod
    def load(cls, profile: dict[str, Any] | None = None) -> "Settings":
        profile = load_profile() if profile is None else profile
        state_path = get_env("APPLIER_STATE_PATH")
        return cls(
            keywords=str(profile.get("keywords") or "").strip(),
            criteria=str(profile.get("criteria") or "").strip(),
            cv=str(profile.get("cv") or "").strip(),
            name=str(profile.get("name") or "").strip(),
            llm_api_key=get_env("LLM_API_KEY") or get_env("OPENAI_API_KEY"),
            llm_base_url=get_env("LLM_BASE_URL"),
            llm_model=get_env("LLM_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
            state_path=Path(state_path) if state_path else DATA_DIR / "state.json",
            settle_seconds=_float_env("APPLIER_SETTLE_SECONDS", 1.0),
            page_timeout=_float_env("APPLIER_PAGE_TIMEOUT", 10.0),
            headless=get_env("RUN_HEADLESS", "true").lower() in ("1", "true", "yes"),
        )

    @property
    def profile(self) -> Profile:
        return Profile(keywords=self.keywords, criteria=self.criteria, cv=self.cv, name=self.name)

    def missing(self, *, need_credential: bool = True) -> list[str]:
        problems = []
        if not self.keywords:
            problems.append("profile: keywords not set")
        if not self.criteria:
            problems.append("profile: criteria not set")
        if not self.cv:
            problems.append("profile: cv not set")
        if need_credential and not self.llm_api_key:
            problems.append("env: LLM_API_KEY not set")
        return problems

    def validate(self, *, need_credential: bool = True) -> None:
        problems = self.missing(need_credential=need_credential)
        if problems:
            raise PreflightError(problems)


def ensure_dirs(settings: Settings | None = None) -> None:
    targets = [settings.state_path.parent] if settings is not None else [DATA_DIR]
    for d in targets:
        d.mkdir(parents=True, exist_ok=True)
