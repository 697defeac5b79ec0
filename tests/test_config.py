import logging

from ig_followcheck.config import Settings, upsert_env_values

_KEYS = (
  "IG_SESSIONID",
  "IG_CSRFTOKEN",
  "IG_DS_USER_ID",
  "PAGE_SIZE",
  "IMAGE_CONCURRENCY",
  "IMAGE_TIMEOUT_SECONDS",
  "FALLBACK_ENTRY_CAP",
  "DEBUG",
  "FOLLOWCHECK_LOG_LEVEL",
  "OUTPUT_DIR",
)


def _isolate(monkeypatch, env_file):
  # Placeholders so monkeypatch restores whatever load_dotenv writes.
  for key in _KEYS:
    monkeypatch.setenv(key, "")
    monkeypatch.delenv(key)
  monkeypatch.setenv("FOLLOWCHECK_ENV_FILE", str(env_file))


def test_load_reads_env_file_and_clamps_values(tmp_path, monkeypatch):
  env_file = tmp_path / ".env"
  env_file.write_text(
    "IG_SESSIONID=abc\nIG_CSRFTOKEN=tok\nPAGE_SIZE=500\nIMAGE_CONCURRENCY=0\nDEBUG=yes\n",
    encoding="utf-8",
  )
  _isolate(monkeypatch, env_file)

  settings = Settings.load()

  assert settings.loaded_env_files == [env_file.resolve()]
  assert settings.ig_sessionid == "abc"
  assert settings.needs_bootstrap is False
  assert settings.page_size == 200
  assert settings.image_concurrency == 1
  assert settings.image_timeout_seconds == 3.0
  assert settings.fallback_entry_cap == 2000
  assert settings.logging_level == logging.DEBUG


def test_missing_cookies_need_bootstrap(tmp_path, monkeypatch):
  _isolate(monkeypatch, tmp_path / "missing.env")
  monkeypatch.setenv("FOLLOWCHECK_LOG_LEVEL", "warning")

  settings = Settings.load()

  assert settings.loaded_env_files == []
  assert settings.needs_bootstrap is True
  assert settings.logging_level == logging.WARNING


def test_upsert_env_values_replaces_and_appends(tmp_path):
  env_file = tmp_path / "nested" / ".env"
  env_file.parent.mkdir()
  env_file.write_text("# cookies\nIG_SESSIONID=old\nOTHER=1\n", encoding="utf-8")

  upsert_env_values(env_file, {"IG_SESSIONID": "new", "IG_CSRFTOKEN": "has space"})

  assert env_file.read_text(encoding="utf-8").splitlines() == [
    "# cookies",
    "IG_SESSIONID=new",
    "OTHER=1",
    'IG_CSRFTOKEN="has space"',
  ]
