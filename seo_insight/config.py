from __future__ import annotations

import os
from dataclasses import dataclass

from seo_insight.models import LANGUAGES, SORT_MODES


def _env(name: str, default: str = "") -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default.strip()
    value = raw.strip()
    placeholder = f"{name}="
    unquoted = value.strip("'\"").strip()
    if unquoted.lower() == placeholder.lower():
        return default.strip()
    return value if value else default.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _normalize_language(raw: str) -> str:
    value = raw.strip().lower()[:2]
    return value if value in LANGUAGES else "tr"


def _normalize_sort_mode(raw: str) -> str:
    value = raw.strip().lower()
    return value if value in SORT_MODES else "percentage"


@dataclass(frozen=True)
class DashboardConfig:
    bq_project_id: str
    bq_dataset_id: str
    bq_table_id: str
    bq_location: str
    bq_access_token: str
    bq_credentials_path: str
    bq_query_timeout_sec: int

    min_activity_clicks: int
    leaderboard_size: int
    page_size: int
    sort_mode: str
    ai_language: str
    output_dir: str
    log_level: str

    use_llm_summary: bool
    llm_endpoint: str
    llm_api_key: str
    llm_api_version: str
    llm_model: str
    llm_temperature: float
    llm_timeout_sec: int
    llm_max_retries: int
    llm_max_output_tokens: int

    @classmethod
    def from_env(cls) -> "DashboardConfig":
        return cls(
            bq_project_id=_env("BQ_PROJECT_ID"),
            bq_dataset_id=_env("BQ_DATASET_ID", "searchconsole"),
            bq_table_id=_env("BQ_TABLE_ID", "searchdata_url_impression"),
            bq_location=_env("BQ_LOCATION", "US"),
            bq_access_token=_env("BQ_ACCESS_TOKEN"),
            bq_credentials_path=_env("BQ_CREDENTIALS_PATH"),
            bq_query_timeout_sec=max(1, _env_int("BQ_QUERY_TIMEOUT_SEC", 60)),
            min_activity_clicks=max(0, _env_int("MIN_ACTIVITY_CLICKS", 3)),
            leaderboard_size=max(1, _env_int("LEADERBOARD_SIZE", 7)),
            page_size=max(1, _env_int("PAGE_SIZE", 20)),
            sort_mode=_normalize_sort_mode(_env("SORT_MODE", "percentage")),
            ai_language=_normalize_language(_env("AI_LANGUAGE", "tr")),
            output_dir=_env("OUTPUT_DIR", "SEO Insight Reports"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            use_llm_summary=_env_bool("USE_LLM_SUMMARY", True),
            llm_endpoint=_env("LLM_ENDPOINT"),
            llm_api_key=_env("LLM_API_KEY") or _env("OPENAI_API_KEY"),
            llm_api_version=_env("LLM_API_VERSION"),
            llm_model=_env("LLM_MODEL"),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.2),
            llm_timeout_sec=_env_int("LLM_TIMEOUT_SEC", 60),
            llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 1200),
        )

    @property
    def bigquery_enabled(self) -> bool:
        if not (self.bq_project_id and self.bq_dataset_id and self.bq_table_id):
            return False
        return bool(self.bq_access_token or self.bq_credentials_path)

    @property
    def llm_enabled(self) -> bool:
        return bool(
            self.use_llm_summary
            and self.llm_endpoint
            and self.llm_api_key
            and self.llm_api_version
            and self.llm_model
        )

    @property
    def table_ref(self) -> str:
        return f"{self.bq_project_id}.{self.bq_dataset_id}.{self.bq_table_id}"
