from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeoutError
import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Mapping

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.auth.credentials import Credentials
from google.cloud import bigquery
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials

from seo_insight.config import DashboardConfig
from seo_insight.errors import UpstreamError
from seo_insight.models import (
    ENTITY_TYPES,
    ComparisonItem,
    DateWindow,
    MetricAggregate,
    MetricSummary,
)
from seo_insight.validation import decode_aggregate_rows, decode_comparison_rows


logger = logging.getLogger(__name__)

ENTITY_COLUMNS = {"url": "url", "query": "query"}
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# The bulk export stores a zero-based position sum per row.
AVG_POSITION_SQL = "SAFE_DIVIDE(SUM(sum_position), SUM(impressions)) + 1"


class SearchConsoleBigQueryClient:
    """Aggregation provider over the Search Console bulk export in BigQuery."""

    SCOPES = ["https://www.googleapis.com/auth/bigquery.readonly"]

    def __init__(
        self,
        project_id: str,
        dataset_id: str = "searchconsole",
        table_id: str = "searchdata_url_impression",
        location: str = "US",
        access_token: str = "",
        credentials_path: str = "",
        min_activity_clicks: int = 3,
        timeout_sec: int = 60,
        client: Any | None = None,
    ) -> None:
        for label, value in (("project", project_id), ("dataset", dataset_id), ("table", table_id)):
            if not value or not _IDENTIFIER_RE.match(value):
                raise RuntimeError(f"Invalid BigQuery {label} identifier: {value!r}")

        self.project_id = project_id
        self.dataset_id = dataset_id
        self.table_id = table_id
        self.location = location
        self.access_token = access_token
        self.credentials_path = credentials_path
        self.min_activity_clicks = max(0, int(min_activity_clicks))
        self.timeout_sec = max(1, int(timeout_sec))
        self._client = client

    @classmethod
    def from_config(cls, config: DashboardConfig) -> "SearchConsoleBigQueryClient":
        return cls(
            project_id=config.bq_project_id,
            dataset_id=config.bq_dataset_id,
            table_id=config.bq_table_id,
            location=config.bq_location,
            access_token=config.bq_access_token,
            credentials_path=config.bq_credentials_path,
            min_activity_clicks=config.min_activity_clicks,
            timeout_sec=config.bq_query_timeout_sec,
        )

    @property
    def table_ref(self) -> str:
        return f"`{self.project_id}.{self.dataset_id}.{self.table_id}`"

    def _build_credentials(self) -> Credentials:
        if self.access_token:
            return UserCredentials(token=self.access_token)

        if self.credentials_path:
            path = Path(self.credentials_path)
            if not path.exists():
                raise RuntimeError(f"BigQuery credentials file not found: {self.credentials_path}")
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise RuntimeError(
                    f"Invalid JSON in credentials file: {self.credentials_path}"
                ) from exc
            if payload.get("type") != "service_account":
                raise RuntimeError("BQ_CREDENTIALS_PATH must point to a service account JSON file.")
            return service_account.Credentials.from_service_account_file(
                self.credentials_path,
                scopes=self.SCOPES,
            )

        raise RuntimeError(
            "Missing BigQuery credentials. Set BQ_ACCESS_TOKEN (OAuth bearer token) "
            "or BQ_CREDENTIALS_PATH (service account JSON)."
        )

    def _build_client(self):
        if self._client is not None:
            return self._client
        self._client = bigquery.Client(
            project=self.project_id,
            location=self.location,
            credentials=self._build_credentials(),
        )
        return self._client

    @staticmethod
    def _entity_column(entity_type: str) -> str:
        column = ENTITY_COLUMNS.get(str(entity_type).strip().lower())
        if column is None:
            raise ValueError(f"Unknown entity type: {entity_type!r} (expected one of {ENTITY_TYPES})")
        return column

    @staticmethod
    def _window_params(prefix: str, window: DateWindow) -> list[bigquery.ScalarQueryParameter]:
        return [
            bigquery.ScalarQueryParameter(f"{prefix}_start", "DATE", window.start),
            bigquery.ScalarQueryParameter(f"{prefix}_end", "DATE", window.end),
        ]

    def _run(self, sql: str, params: list[bigquery.ScalarQueryParameter], label: str) -> list[Mapping[str, Any]]:
        job_config = bigquery.QueryJobConfig(query_parameters=params)
        logger.info("BigQuery %s query on %s", label, self.table_ref)
        logger.debug("SQL:\n%s", sql)
        try:
            client = self._build_client()
        except RuntimeError as exc:
            raise UpstreamError(f"BigQuery client error ({label}): {exc}", "auth") from exc

        try:
            query_job = client.query(sql, job_config=job_config)
            rows = list(query_job.result(timeout=self.timeout_sec))
        except (auth_exceptions.RefreshError, auth_exceptions.DefaultCredentialsError) as exc:
            raise UpstreamError(f"BigQuery auth error ({label}): {exc}", "auth") from exc
        except (api_exceptions.Unauthorized, api_exceptions.Forbidden) as exc:
            raise UpstreamError(f"BigQuery auth error ({label}): {exc}", "auth") from exc
        except (api_exceptions.DeadlineExceeded, FutureTimeoutError, TimeoutError) as exc:
            raise UpstreamError(f"BigQuery timeout ({label}): {exc}", "timeout") from exc
        except (api_exceptions.BadRequest, api_exceptions.NotFound) as exc:
            raise UpstreamError(f"BigQuery query error ({label}): {exc}", "query") from exc
        except api_exceptions.GoogleAPICallError as exc:
            raise UpstreamError(f"BigQuery API error ({label}): {exc}", "transport") from exc
        logger.info("BigQuery %s returned %d rows", label, len(rows))
        return rows

    def _aggregate_sql(self, column: str, extra_filter: str = "") -> str:
        return f"""
SELECT
  {column} AS key,
  SUM(clicks) AS clicks,
  SUM(impressions) AS impressions,
  IFNULL({AVG_POSITION_SQL}, 0) AS avg_position
FROM {self.table_ref}
WHERE data_date BETWEEN @cur_start AND @cur_end
  AND {column} IS NOT NULL{extra_filter}
GROUP BY key
ORDER BY clicks DESC, key
""".strip()

    @staticmethod
    def _decode_aggregates(rows: Iterable[Mapping[str, Any]]) -> list[MetricAggregate]:
        decoded, quarantined = decode_aggregate_rows(rows)
        if quarantined:
            logger.warning("Dropped %d malformed aggregate rows", len(quarantined))
        return decoded

    def fetch_aggregates(self, entity_type: str, window: DateWindow) -> list[MetricAggregate]:
        column = self._entity_column(entity_type)
        rows = self._run(
            self._aggregate_sql(column),
            self._window_params("cur", window),
            f"{column} aggregates",
        )
        return self._decode_aggregates(rows)

    def fetch_top(self, entity_type: str, window: DateWindow, limit: int = 100) -> list[MetricAggregate]:
        column = self._entity_column(entity_type)
        sql = f"{self._aggregate_sql(column)}\nLIMIT @row_limit"
        params = self._window_params("cur", window) + [
            bigquery.ScalarQueryParameter("row_limit", "INT64", max(1, int(limit))),
        ]
        return self._decode_aggregates(self._run(sql, params, f"top {column}"))

    def fetch_url_details(self, url: str, window: DateWindow) -> list[MetricAggregate]:
        """Queries that brought traffic to one page."""
        sql = self._aggregate_sql("query", "\n  AND url = @entity_value")
        params = self._window_params("cur", window) + [
            bigquery.ScalarQueryParameter("entity_value", "STRING", url),
        ]
        return self._decode_aggregates(self._run(sql, params, "url details"))

    def fetch_query_details(self, query: str, window: DateWindow) -> list[MetricAggregate]:
        """Pages competing for one query."""
        sql = self._aggregate_sql("url", "\n  AND query = @entity_value")
        params = self._window_params("cur", window) + [
            bigquery.ScalarQueryParameter("entity_value", "STRING", query),
        ]
        return self._decode_aggregates(self._run(sql, params, "query details"))

    def fetch_summary(self, window: DateWindow) -> MetricSummary:
        sql = f"""
SELECT
  IFNULL(SUM(clicks), 0) AS clicks,
  IFNULL(SUM(impressions), 0) AS impressions,
  IFNULL({AVG_POSITION_SQL}, 0) AS avg_position
FROM {self.table_ref}
WHERE data_date BETWEEN @cur_start AND @cur_end
""".strip()
        rows = self._run(sql, self._window_params("cur", window), "summary")
        row = dict(rows[0]) if rows else {}
        decoded, quarantined = decode_aggregate_rows([{"key": "TOTAL", **row}])
        if quarantined:
            raise UpstreamError(f"BigQuery summary returned malformed totals: {quarantined[0]}", "query")
        total = decoded[0]
        return MetricSummary(
            clicks=total.clicks,
            impressions=total.impressions,
            ctr=total.ctr,
            avg_position=total.avg_position,
        )

    def fetch_comparison_join(
        self,
        entity_type: str,
        active: DateWindow,
        previous: DateWindow,
    ) -> list[ComparisonItem]:
        column = self._entity_column(entity_type)
        sql = f"""
WITH current_window AS (
  SELECT
    {column} AS key,
    SUM(clicks) AS clicks,
    SUM(impressions) AS impressions,
    {AVG_POSITION_SQL} AS avg_position
  FROM {self.table_ref}
  WHERE data_date BETWEEN @cur_start AND @cur_end
    AND {column} IS NOT NULL
  GROUP BY key
),
previous_window AS (
  SELECT
    {column} AS key,
    SUM(clicks) AS clicks,
    SUM(impressions) AS impressions,
    {AVG_POSITION_SQL} AS avg_position
  FROM {self.table_ref}
  WHERE data_date BETWEEN @prev_start AND @prev_end
    AND {column} IS NOT NULL
  GROUP BY key
)
SELECT
  COALESCE(c.key, p.key) AS key,
  IFNULL(c.clicks, 0) AS clicks,
  IFNULL(c.impressions, 0) AS impressions,
  IFNULL(c.avg_position, 0) AS avg_position,
  IFNULL(p.clicks, 0) AS prev_clicks,
  IFNULL(p.impressions, 0) AS prev_impressions,
  IFNULL(p.avg_position, 0) AS prev_avg_position
FROM current_window c
FULL OUTER JOIN previous_window p ON c.key = p.key
WHERE IFNULL(c.clicks, 0) > @min_clicks OR IFNULL(p.clicks, 0) > @min_clicks
ORDER BY key
""".strip()
        params = (
            self._window_params("cur", active)
            + self._window_params("prev", previous)
            + [bigquery.ScalarQueryParameter("min_clicks", "INT64", self.min_activity_clicks)]
        )
        rows = self._run(sql, params, f"{column} comparison")
        decoded, quarantined = decode_comparison_rows(rows)
        if quarantined:
            logger.warning("Dropped %d malformed comparison rows", len(quarantined))
        return decoded
