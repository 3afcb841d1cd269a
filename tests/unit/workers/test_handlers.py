"""
End-to-end tests for ParseSourceHandler and the dispatcher.

Uses SQLite for sources and articles, the in-memory Redis double for
throttling, redirects, and the response cache, and respx for feed servers.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_ingest.aggregator.fetcher import FetchClient
from feed_ingest.aggregator.redirects import RedirectTracker
from feed_ingest.aggregator.strategies import build_default_registry
from feed_ingest.aggregator.throttle import DEFAULT_RETRY_AFTER, DomainThrottle
from feed_ingest.db.models import Source
from feed_ingest.db.repositories import ArticleRepository, JobRepository
from feed_ingest.db.repositories.source import (
    FAILURE_KIND_FETCH,
    FAILURE_KIND_PARSE,
    FAILURE_KIND_RATE_LIMIT,
)
from feed_ingest.workers.handlers import (
    IngestionDependencies,
    ParseOutcome,
    ParseSourceHandler,
    build_dispatcher,
)
from feed_ingest.workers.queue import JobStore
from feed_ingest.workers.source_scheduler import SourceScheduler, parse_source_job_id
from feed_ingest.workers.types import JobName, QueuedJob, TaskResult
from tests.factories import SourceFactory
from tests.helpers import FakeClock, naive

FEED_URL = "https://blog.example.com/feed.xml"
RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Blog</title><link>https://blog.example.com/</link>
<item><title>One</title><link>https://blog.example.com/1</link><guid>post-1</guid>
<pubDate>Tue, 30 Apr 2024 08:00:00 GMT</pubDate></item>
<item><title>Two</title><link>https://blog.example.com/2</link><guid>post-2</guid></item>
</channel></rss>"""

ID_LESS_RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Notes</title><link>https://blog.example.com/</link>
<item><title>Short note</title><description>Same words every time.</description></item>
</channel></rss>"""

def _job(source_id: int, **payload) -> QueuedJob:
    body = {"sourceId": source_id}
    body.update(payload)
    return QueuedJob(
        id=1,
        general_id=parse_source_job_id(source_id),
        name=JobName.PARSE_SOURCE.value,
        payload=body,
    )


async def _load(session_factory: async_sessionmaker[AsyncSession], source_id: int) -> Source:
    async with session_factory() as session:
        source = await session.get(Source, source_id)
        assert source is not None
        return source


@pytest.fixture
def deps(
    session_factory: async_sessionmaker[AsyncSession],
    throttle: DomainThrottle,
    redirects: RedirectTracker,
    fetch_client: FetchClient,
) -> IngestionDependencies:
    job_store = JobStore(session_factory)
    return IngestionDependencies(
        session_factory=session_factory,
        job_store=job_store,
        throttle=throttle,
        redirects=redirects,
        fetcher=fetch_client,
        registry=build_default_registry(),
        source_scheduler=SourceScheduler(session_factory, job_store),
    )


@pytest.fixture
def handler(deps: IngestionDependencies) -> ParseSourceHandler:
    return ParseSourceHandler(deps)


async def _add_source(
    session_factory: async_sessionmaker[AsyncSession], **overrides
) -> int:
    async with session_factory() as session:
        source = SourceFactory.build(**overrides)
        session.add(source)
        await session.commit()
        return source.id


class TestParseSourceHandler:
    """Tests for the fetch, parse, and bookkeeping flow."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_successful_parse_stores_articles(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL, recent_failures=2)
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text=RSS))

        outcome = await handler(_job(source_id))

        assert outcome is ParseOutcome.SUCCESS
        source = await _load(session_factory, source_id)
        assert source.recent_failures == 0
        assert source.recent_failure_details == "not cached"
        assert naive(source.last_success) == naive(clock.now())
        async with session_factory() as session:
            articles = await ArticleRepository(session).list_for_source(source_id)
        assert {article.guid for article in articles} == {"post-1", "post-2"}

    @respx.mock
    @pytest.mark.asyncio
    async def test_fresh_cache_marks_cached_success(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        route = respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, text=RSS, headers={"Cache-Control": "max-age=600"})
        )

        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS
        clock.advance(11)
        outcome = await handler(_job(source_id))

        assert outcome is ParseOutcome.CACHED
        assert route.call_count == 1
        source = await _load(session_factory, source_id)
        assert source.recent_failure_details == "cached"

    @respx.mock
    @pytest.mark.asyncio
    async def test_skip_cache_forces_network(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        route = respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, text=RSS, headers={"Cache-Control": "max-age=600"})
        )

        await handler(_job(source_id))
        clock.advance(11)
        outcome = await handler(_job(source_id, skipCache=True))

        assert outcome is ParseOutcome.SUCCESS
        assert route.call_count == 2

    @respx.mock
    @pytest.mark.asyncio
    async def test_recent_domain_fetch_skips_without_bookkeeping(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        first_id = await _add_source(session_factory, url=FEED_URL)
        second_id = await _add_source(session_factory, url="https://blog.example.com/other.xml")
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text=RSS))

        assert await handler(_job(first_id)) is ParseOutcome.SUCCESS
        outcome = await handler(_job(second_id))

        assert outcome is ParseOutcome.SKIPPED
        source = await _load(session_factory, second_id)
        assert source.last_attempt is None
        assert source.recent_failures == 0

    @respx.mock
    @pytest.mark.asyncio
    async def test_rate_limit_defers_without_counting_failure(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        route = respx.get(FEED_URL).mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "120"}),
                httpx.Response(200, text=RSS),
            ]
        )

        assert await handler(_job(source_id)) is ParseOutcome.DEFERRED
        source = await _load(session_factory, source_id)
        assert source.recent_failures == 0
        assert source.last_failure_kind == FAILURE_KIND_RATE_LIMIT

        clock.advance(60)
        assert await handler(_job(source_id)) is ParseOutcome.SKIPPED
        assert route.call_count == 1

        clock.advance(70)
        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS
        assert route.call_count == 2

    @respx.mock
    @pytest.mark.asyncio
    async def test_unparseable_payload_is_parse_failure(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL, recent_failures=1)
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text="definitely not a feed"))

        outcome = await handler(_job(source_id))

        assert outcome is ParseOutcome.FAILED
        source = await _load(session_factory, source_id)
        assert source.recent_failures == 2
        assert source.last_failure_kind == FAILURE_KIND_PARSE
        assert "No suitable strategy" in source.recent_failure_details

    @respx.mock
    @pytest.mark.asyncio
    async def test_server_error_is_fetch_failure(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(return_value=httpx.Response(500, text="oops"))

        assert await handler(_job(source_id)) is ParseOutcome.FAILED
        source = await _load(session_factory, source_id)
        assert source.recent_failures == 1
        assert source.last_failure_kind == FAILURE_KIND_FETCH

    @respx.mock
    @pytest.mark.asyncio
    async def test_transport_error_is_fetch_failure(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))

        assert await handler(_job(source_id)) is ParseOutcome.FAILED
        source = await _load(session_factory, source_id)
        assert source.last_failure_kind == FAILURE_KIND_FETCH
        assert "ConnectTimeout" in source.recent_failure_details

    @respx.mock
    @pytest.mark.asyncio
    async def test_stored_preference_is_honoured(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL, strategy_type="json")
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text=RSS))

        assert await handler(_job(source_id)) is ParseOutcome.FAILED
        source = await _load(session_factory, source_id)
        assert source.last_failure_kind == FAILURE_KIND_PARSE

    @respx.mock
    @pytest.mark.asyncio
    async def test_json_feed_detected_by_content(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        url = "https://json.example.com/feed"
        source_id = await _add_source(session_factory, url=url)
        body = json.dumps(
            {
                "version": "https://jsonfeed.org/version/1.1",
                "title": "J",
                "items": [{"id": "j-1", "url": "https://json.example.com/1", "content_text": "hi"}],
            }
        )
        respx.get(url).mock(return_value=httpx.Response(200, text=body))

        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS
        async with session_factory() as session:
            assert await ArticleRepository(session).get_by_guid("j-1") is not None

    @respx.mock
    @pytest.mark.asyncio
    async def test_permanent_redirect_leaves_source_url(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        redirects: RedirectTracker,
    ) -> None:
        new_url = "https://feeds.example.org/blog.xml"
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(return_value=httpx.Response(308, headers={"Location": new_url}))
        respx.get(new_url).mock(return_value=httpx.Response(200, text=RSS))

        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS

        source = await _load(session_factory, source_id)
        assert source.url == FEED_URL
        assert await redirects.resolve_url(FEED_URL) == new_url

    @respx.mock
    @pytest.mark.asyncio
    async def test_out_of_range_retry_after_still_defers(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        throttle: DomainThrottle,
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "99999999999999"})
        )

        assert await handler(_job(source_id)) is ParseOutcome.DEFERRED

        source = await _load(session_factory, source_id)
        assert source.recent_failures == 0
        assert source.last_failure_kind == FAILURE_KIND_RATE_LIMIT
        assert await throttle.cooldown_until("blog.example.com") == clock.now() + DEFAULT_RETRY_AFTER

    @respx.mock
    @pytest.mark.asyncio
    async def test_out_of_range_ratelimit_reset_is_ignored(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(
                200,
                text=RSS,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1e20"},
            )
        )

        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS
        source = await _load(session_factory, source_id)
        assert source.recent_failures == 0

    @respx.mock
    @pytest.mark.asyncio
    async def test_items_without_id_keep_guid_across_cycles(
        self,
        handler: ParseSourceHandler,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text=ID_LESS_RSS))

        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS
        async with session_factory() as session:
            (first,) = await ArticleRepository(session).list_for_source(source_id)

        clock.advance(60)
        assert await handler(_job(source_id)) is ParseOutcome.SUCCESS

        async with session_factory() as session:
            repo = ArticleRepository(session)
            (second,) = await repo.list_for_source(source_id)
            assert await repo.count(source_id=source_id) == 1
        assert second.guid == first.guid
        assert naive(second.last_seen_in_feed_at) == naive(clock.now())
        assert naive(second.last_seen_in_feed_at) > naive(first.last_seen_in_feed_at)

    @pytest.mark.asyncio
    async def test_missing_source_is_dropped(self, handler: ParseSourceHandler) -> None:
        assert await handler(_job(999)) is ParseOutcome.MISSING

    @pytest.mark.asyncio
    async def test_payload_without_source_id(self, handler: ParseSourceHandler) -> None:
        job = QueuedJob(id=1, general_id="odd", name=JobName.PARSE_SOURCE.value, payload={})
        assert await handler(job) is ParseOutcome.MISSING


class TestQueuedParseSource:
    """Tests running ParseSource jobs through the SQLite-backed JobStore."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_duplicate_enqueue_fetches_source_once(
        self,
        deps: IngestionDependencies,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, text=RSS))
        general_id = parse_source_job_id(source_id)
        payload = {"sourceId": source_id}

        assert await deps.job_store.enqueue(general_id, JobName.PARSE_SOURCE.value, payload) is True
        assert await deps.job_store.enqueue(general_id, JobName.PARSE_SOURCE.value, payload) is False

        claimed = await deps.job_store.claim_batch(10)
        dispatcher = build_dispatcher(deps)
        outcomes = [await dispatcher.dispatch(job) for job in claimed]

        assert [job.general_id for job in claimed] == [general_id]
        assert outcomes == [ParseOutcome.SUCCESS]
        assert route.call_count == 1
        assert await deps.job_store.claim_batch(10) == []
        source = await _load(session_factory, source_id)
        assert source.last_success is not None


class TestDispatcher:
    """Tests for routing jobs by name."""

    @pytest.mark.asyncio
    async def test_gather_sources_job_runs_scan(
        self,
        deps: IngestionDependencies,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        source_id = await _add_source(session_factory, url=FEED_URL)
        dispatcher = build_dispatcher(deps)
        job = QueuedJob(
            id=1,
            general_id="gather-sources",
            name=JobName.GATHER_SOURCES.value,
            payload={"every": 20},
        )

        result = await dispatcher.dispatch(job)

        assert isinstance(result, TaskResult)
        assert result.success is True
        assert set(dispatcher.job_names) == {JobName.PARSE_SOURCE, JobName.GATHER_SOURCES}
        async with session_factory() as session:
            queued = await JobRepository(session).get_by_general_id(parse_source_job_id(source_id))
        assert queued is not None
        assert queued.payload == {"sourceId": source_id}
