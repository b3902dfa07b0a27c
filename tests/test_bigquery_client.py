from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date
import json

import pytest
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions

from seo_insight.clients.bigquery_client import SearchConsoleBigQueryClient
from seo_insight.errors import UpstreamError
from seo_insight.models import DateWindow


ACTIVE = DateWindow(date(2024, 3, 1), date(2024, 3, 10))
PREVIOUS = DateWindow(date(2024, 2, 20), date(2024, 2, 29))


class _FakeJob:
    def __init__(self, rows=None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error

    def result(self, timeout=None):
        if self.error is not None:
            raise self.error
        return iter(self.rows)


class _FakeBigQuery:
    def __init__(self, rows=None, error: Exception | None = None) -> None:
        self.rows = rows
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def query(self, sql, job_config=None):
        params = {param.name: param.value for param in job_config.query_parameters}
        self.calls.append((sql, params))
        return _FakeJob(self.rows, self.error)


def _client(fake: _FakeBigQuery, **kwargs) -> SearchConsoleBigQueryClient:
    return SearchConsoleBigQueryClient("my-project", access_token="token", client=fake, **kwargs)


def test_comparison_join_binds_windows_and_threshold() -> None:
    fake = _FakeBigQuery(
        rows=[
            {
                "key": "https://example.com/a",
                "clicks": 12,
                "impressions": 200,
                "avg_position": 3.5,
                "prev_clicks": 0,
                "prev_impressions": 0,
                "prev_avg_position": 0,
            },
            {"key": "broken", "clicks": -4},
        ]
    )
    client = _client(fake, min_activity_clicks=5)

    items = client.fetch_comparison_join("url", ACTIVE, PREVIOUS)

    assert [item.key for item in items] == ["https://example.com/a"]
    assert items[0].click_delta == 12
    sql, params = fake.calls[0]
    assert "FULL OUTER JOIN" in sql
    assert "`my-project.searchconsole.searchdata_url_impression`" in sql
    assert "url AS key" in sql
    assert params == {
        "cur_start": ACTIVE.start,
        "cur_end": ACTIVE.end,
        "prev_start": PREVIOUS.start,
        "prev_end": PREVIOUS.end,
        "min_clicks": 5,
    }


def test_details_filter_on_the_other_entity() -> None:
    fake = _FakeBigQuery(rows=[{"key": "red shoes", "clicks": 4, "impressions": 40, "avg_position": 7.0}])
    client = _client(fake)

    rows = client.fetch_url_details("https://example.com/a", ACTIVE)
    client.fetch_query_details("red shoes", ACTIVE)

    assert rows[0].key == "red shoes"
    url_sql, url_params = fake.calls[0]
    query_sql, query_params = fake.calls[1]
    assert "query AS key" in url_sql and "AND url = @entity_value" in url_sql
    assert url_params["entity_value"] == "https://example.com/a"
    assert "url AS key" in query_sql and "AND query = @entity_value" in query_sql
    assert query_params["entity_value"] == "red shoes"


def test_fetch_top_limits_rows() -> None:
    fake = _FakeBigQuery(rows=[])
    _client(fake).fetch_top("query", ACTIVE, limit=25)

    sql, params = fake.calls[0]
    assert sql.endswith("LIMIT @row_limit")
    assert params["row_limit"] == 25


def test_fetch_summary_converts_totals() -> None:
    fake = _FakeBigQuery(rows=[{"clicks": 100, "impressions": 1000, "avg_position": 5.5}])
    summary = _client(fake).fetch_summary(ACTIVE)

    assert summary.clicks == 100
    assert summary.ctr == 10.0
    assert summary.avg_position == 5.5

    empty = _client(_FakeBigQuery(rows=[])).fetch_summary(ACTIVE)
    assert empty.clicks == 0
    assert empty.ctr == 0.0


@pytest.mark.parametrize(
    ("error", "category"),
    [
        (api_exceptions.Unauthorized("expired token"), "auth"),
        (api_exceptions.Forbidden("no access"), "auth"),
        (auth_exceptions.RefreshError("cannot refresh"), "auth"),
        (api_exceptions.DeadlineExceeded("slow"), "timeout"),
        (FutureTimeoutError(), "timeout"),
        (api_exceptions.BadRequest("syntax"), "query"),
        (api_exceptions.NotFound("no table"), "query"),
        (api_exceptions.ServiceUnavailable("down"), "transport"),
    ],
)
def test_upstream_errors_are_categorized(error: Exception, category: str) -> None:
    client = _client(_FakeBigQuery(error=error))

    with pytest.raises(UpstreamError) as excinfo:
        client.fetch_aggregates("query", ACTIVE)

    assert excinfo.value.category == category
    assert excinfo.value.is_auth_error is (category == "auth")
    assert excinfo.value.__cause__ is error


def test_missing_credentials_is_an_auth_error() -> None:
    client = SearchConsoleBigQueryClient("my-project")

    with pytest.raises(UpstreamError) as excinfo:
        client.fetch_summary(ACTIVE)
    assert excinfo.value.is_auth_error


def test_credentials_file_must_be_service_account(tmp_path) -> None:
    path = tmp_path / "creds.json"
    path.write_text(json.dumps({"type": "authorized_user"}), encoding="utf-8")
    client = SearchConsoleBigQueryClient("my-project", credentials_path=str(path))

    with pytest.raises(RuntimeError, match="service account"):
        client._build_credentials()


def test_access_token_builds_bearer_credentials() -> None:
    client = SearchConsoleBigQueryClient("my-project", access_token="ya29.abc")
    assert client._build_credentials().token == "ya29.abc"


def test_identifiers_and_entity_types_are_validated() -> None:
    with pytest.raises(RuntimeError):
        SearchConsoleBigQueryClient("my-project; DROP TABLE x")
    with pytest.raises(RuntimeError):
        SearchConsoleBigQueryClient("my-project", table_id="")

    client = _client(_FakeBigQuery(rows=[]))
    with pytest.raises(ValueError):
        client.fetch_aggregates("country", ACTIVE)
