from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _env_bool(name: str, default: bool = False) -> bool:
  raw = os.getenv(name)
  if raw is None:
    return default
  return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  try:
    return int(raw.strip())
  except ValueError:
    return default


def _env_float(name: str, default: float) -> float:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  try:
    return float(raw.strip())
  except ValueError:
    return default


def get_project_root() -> Path:
  return Path(__file__).resolve().parent.parent


def get_env_file_path() -> Path:
  override = os.getenv("FOLLOWCHECK_ENV_FILE")
  if override:
    return Path(override).expanduser().resolve()
  return (get_project_root() / ".env").resolve()


def load_env_file() -> list[Path]:
  env_path = get_env_file_path()
  loaded: list[Path] = []
  if env_path.exists():
    # Own .env wins over inherited shell variables.
    load_dotenv(env_path, override=True)
    loaded.append(env_path)
  return loaded


def _quote_env_value(value: str) -> str:
  if re.fullmatch(r"[A-Za-z0-9_./:@+%\-]+", value):
    return value
  escaped = value.replace("\\", "\\\\").replace('"', '\\"')
  return f'"{escaped}"'


def upsert_env_values(env_path: Path, values: dict[str, str]) -> None:
  env_path.parent.mkdir(parents=True, exist_ok=True)

  existing_lines: list[str] = []
  if env_path.exists():
    existing_lines = env_path.read_text(encoding="utf-8").splitlines()

  key_pattern = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=")
  line_index_by_key: dict[str, int] = {}
  for idx, line in enumerate(existing_lines):
    match = key_pattern.match(line)
    if match:
      line_index_by_key[match.group(1)] = idx

  for key, value in values.items():
    rendered = f"{key}={_quote_env_value(value)}"
    if key in line_index_by_key:
      existing_lines[line_index_by_key[key]] = rendered
    else:
      existing_lines.append(rendered)

  env_path.write_text("\n".join(existing_lines).strip() + "\n", encoding="utf-8")


@dataclass
class Settings:
  loaded_env_files: list[Path]
  env_file: Path

  ig_sessionid: str | None
  ig_csrftoken: str | None
  ig_ds_user_id: str | None
  ig_www_claim: str
  ig_app_id: str
  ig_asbd_id: str
  ig_base_url: str
  ig_user_agent: str
  proxy_url: str | None

  request_timeout_seconds: float
  page_size: int
  fallback_entry_cap: int
  image_timeout_seconds: float
  image_concurrency: int
  output_dir: Path
  debug: bool
  log_level: str

  @property
  def needs_bootstrap(self) -> bool:
    return (self.ig_sessionid or "").strip() == "" or (self.ig_csrftoken or "").strip() == ""

  @property
  def logging_level(self) -> int:
    if self.debug:
      return logging.DEBUG
    level = logging.getLevelName(self.log_level.strip().upper())
    return level if isinstance(level, int) else logging.INFO

  @classmethod
  def load(cls) -> "Settings":
    loaded_env_files = load_env_file()
    env_file = get_env_file_path()
    return cls(
      loaded_env_files=loaded_env_files,
      env_file=env_file,
      ig_sessionid=os.getenv("IG_SESSIONID"),
      ig_csrftoken=os.getenv("IG_CSRFTOKEN"),
      ig_ds_user_id=os.getenv("IG_DS_USER_ID"),
      ig_www_claim=os.getenv("IG_WWW_CLAIM", "0"),
      ig_app_id=os.getenv("IG_APP_ID", "936619743392459"),
      ig_asbd_id=os.getenv("IG_ASBD_ID", "129477"),
      ig_base_url=os.getenv("IG_BASE_URL", "https://www.instagram.com"),
      ig_user_agent=os.getenv(
        "IG_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
      ),
      proxy_url=os.getenv("PROXY_URL"),
      request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 25.0),
      page_size=max(1, min(_env_int("PAGE_SIZE", 50), 200)),
      fallback_entry_cap=max(1, _env_int("FALLBACK_ENTRY_CAP", 2000)),
      image_timeout_seconds=max(0.1, _env_float("IMAGE_TIMEOUT_SECONDS", 3.0)),
      image_concurrency=max(1, _env_int("IMAGE_CONCURRENCY", 5)),
      output_dir=Path(os.getenv("OUTPUT_DIR", str(get_project_root() / "output"))).expanduser(),
      debug=_env_bool("DEBUG", default=False),
      log_level=os.getenv("FOLLOWCHECK_LOG_LEVEL", "INFO"),
    )
