from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field, replace
import logging
import threading
from typing import Any, Protocol

from seo_insight.comparison import (
    DEFAULT_LEADERBOARD_SIZE,
    DEFAULT_PAGE_SIZE,
    build_leaderboards,
    detect_common_prefix,
    rank_detail,
)
from seo_insight.errors import UpstreamError
from seo_insight.models import (
    COMPARISON_MODES,
    ENTITY_TYPES,
    METRICS,
    SORT_MODES,
    TRENDS,
    ComparisonItem,
    ComparisonPage,
    DateWindow,
    Leaderboard,
)
from seo_insight.time_windows import comparison_window, default_window


logger = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_LOADING = "loading"
STATE_READY = "ready"
STATE_FAILED = "failed"

DATA_FIELDS = ("entity_type", "window", "comparison_mode")
VIEW_FIELDS = ("sort_mode", "metric", "trend", "search_term")


class ComparisonProvider(Protocol):
    def fetch_comparison_join(
        self,
        entity_type: str,
        active: DateWindow,
        previous: DateWindow,
    ) -> list[ComparisonItem]: ...


@dataclass(frozen=True)
class RequestParams:
    window: DateWindow
    entity_type: str = "query"
    comparison_mode: str = "previous_period"
    sort_mode: str = "percentage"
    metric: str = "clicks"
    trend: str = "rising"
    search_term: str = ""
    page: int = 1

    def validate(self) -> None:
        for name, value, choices in (
            ("entity type", self.entity_type, ENTITY_TYPES),
            ("comparison mode", self.comparison_mode, COMPARISON_MODES),
            ("sort mode", self.sort_mode, SORT_MODES),
            ("metric", self.metric, METRICS),
            ("trend", self.trend, TRENDS),
        ):
            if value not in choices:
                raise ValueError(f"Unknown {name}: {value!r} (expected one of {choices})")
        # Raises InvalidRangeError for reversed windows before anything is fetched.
        comparison_window(self.window, self.comparison_mode)

    def data_key(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in DATA_FIELDS)


@dataclass(frozen=True)
class DatasetSnapshot:
    generation: int
    entity_type: str
    active: DateWindow
    previous: DateWindow
    items: tuple[ComparisonItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DashboardView:
    state: str
    params: RequestParams
    snapshot: DatasetSnapshot | None
    common_prefix: str = ""
    leaderboards: tuple[Leaderboard, ...] = field(default_factory=tuple)
    detail: ComparisonPage | None = None
    error: Exception | None = None


class DashboardSession:
    """Comparison dashboard state: one parameter event, one recompute pipeline.

    Data parameter changes start a new fetch generation; only the newest
    generation may replace the current snapshot or report an error.
    """

    def __init__(
        self,
        provider: ComparisonProvider,
        params: RequestParams | None = None,
        leaderboard_size: int = DEFAULT_LEADERBOARD_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.provider = provider
        self.leaderboard_size = max(1, int(leaderboard_size))
        self.page_size = max(1, int(page_size))
        self.params = params or RequestParams(window=default_window())
        self.params.validate()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._lock = threading.Lock()
        self._generation = 0
        self._future: Future | None = None
        self._state = STATE_IDLE
        self._snapshot: DatasetSnapshot | None = None
        self._last_error: Exception | None = None

    def __enter__(self) -> "DashboardSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    @property
    def state(self) -> str:
        return self._state

    @property
    def snapshot(self) -> DatasetSnapshot | None:
        return self._snapshot

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def generation(self) -> int:
        return self._generation

    def update(self, **changes: Any) -> RequestParams:
        """Apply a parameter change and fetch again when data parameters moved."""
        unknown = set(changes) - set(DATA_FIELDS) - set(VIEW_FIELDS) - {"page"}
        if unknown:
            raise ValueError(f"Unknown dashboard parameters: {sorted(unknown)}")

        if "page" not in changes and any(name in changes for name in DATA_FIELDS + VIEW_FIELDS):
            changes["page"] = 1
        new_params = replace(self.params, **changes)
        new_params.validate()

        data_changed = new_params.data_key() != self.params.data_key()
        self.params = new_params
        if data_changed or (self._snapshot is None and self._future is None):
            self._start_fetch(new_params)
        return new_params

    def refresh(self) -> None:
        self._start_fetch(self.params)

    def _start_fetch(self, params: RequestParams) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._future is not None and not self._future.done():
                self._future.cancel()
            self._state = STATE_LOADING
            self._last_error = None
            self._future = self._executor.submit(self._run_generation, generation, params)
        logger.debug("Started fetch generation %d for %s", generation, params.data_key())

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _run_generation(self, generation: int, params: RequestParams) -> None:
        try:
            previous = comparison_window(params.window, params.comparison_mode)
            items = self.provider.fetch_comparison_join(params.entity_type, params.window, previous)
            snapshot = DatasetSnapshot(
                generation=generation,
                entity_type=params.entity_type,
                active=params.window,
                previous=previous,
                items=tuple(items),
            )
        except UpstreamError as exc:
            self._apply_failure(generation, exc)
            return
        except Exception as exc:
            self._apply_failure(generation, exc)
            raise
        self._apply_snapshot(generation, snapshot)

    def _apply_snapshot(self, generation: int, snapshot: DatasetSnapshot) -> None:
        with self._lock:
            if not self._is_current(generation):
                logger.debug("Discarded stale result of generation %d", generation)
                return
            self._snapshot = snapshot
            self._state = STATE_READY

    def _apply_failure(self, generation: int, exc: Exception) -> None:
        with self._lock:
            if not self._is_current(generation):
                logger.debug("Discarded stale error of generation %d: %s", generation, exc)
                return
            self._last_error = exc
            self._state = STATE_FAILED
        logger.warning("Comparison fetch failed: %s", exc)

    def wait(self, timeout: float | None = None) -> DashboardView:
        """Block until the newest fetch generation has resolved."""
        while True:
            with self._lock:
                future = self._future
                generation = self._generation
            if future is None:
                break
            wait_futures([future], timeout=timeout)
            if generation == self._generation or timeout is not None:
                break

        error = self._last_error
        if error is not None and not isinstance(error, UpstreamError):
            raise error
        return self.view()

    def view(self) -> DashboardView:
        with self._lock:
            snapshot = self._snapshot
            params = self.params
            state = self._state
            error = self._last_error

        if snapshot is None:
            return DashboardView(state=state, params=params, snapshot=None, error=error)

        items = snapshot.items
        prefix = detect_common_prefix(items) if snapshot.entity_type == "url" else ""
        return DashboardView(
            state=state,
            params=params,
            snapshot=snapshot,
            common_prefix=prefix,
            leaderboards=tuple(build_leaderboards(items, params.sort_mode, self.leaderboard_size)),
            detail=rank_detail(
                items,
                params.metric,
                params.trend,
                params.sort_mode,
                term=params.search_term,
                page=params.page,
                page_size=self.page_size,
            ),
            error=error,
        )
