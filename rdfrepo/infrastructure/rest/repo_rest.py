"""REST repository client — implements the MetadataSource interface.

Talks to the repository's HTTP API with httpx: searches are posted to
``{base_url}search`` in the form-encoded condition wire form and answered with
N-Triples, which are parsed with rdflib and fed through the same graph mapper
as the relational reader.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from enum import Enum
from typing import Any, TypeVar

import httpx
from rdflib import Graph

from rdfrepo.application.interfaces.metadata_source import MetadataSource
from rdfrepo.application.services.graph_mapper import ResourceGraphMapper
from rdfrepo.domain.entities.metadata_mode import MetadataMode
from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.schema import RepositorySchema
from rdfrepo.domain.entities.search_condition import SearchCondition
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import (
    AmbiguousMatchError,
    NotFoundError,
    RepoLibError,
    RepositoryConnectionError,
)

logger = logging.getLogger(__name__)

NTRIPLES = "application/n-triples"

T = TypeVar("T")
R = TypeVar("R")


class RejectAction(str, Enum):
    """What ``RepoRest.map()`` does with an item whose call failed."""

    SKIP = "skip"
    FAIL = "fail"
    INCLUDE = "include"


class RepoRest(MetadataSource):
    """Infrastructure adapter — read access through the repository REST API.

    The http client is injected (or created per call) so tests can use
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        schema: RepositorySchema,
        header_names: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        concurrency: int = 4,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.schema = schema
        self._header_names = dict(header_names or {})
        self._http_client = http_client
        self._timeout = timeout
        self._concurrency = concurrency
        self._mapper = ResourceGraphMapper(self.base_url, schema)

    @property
    def mapper(self) -> ResourceGraphMapper:
        return self._mapper

    async def _get_client(self) -> httpx.AsyncClient:
        """Return the injected client or create a new one."""
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=self._timeout)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: dict[str, list[str]] | None = None,
    ) -> Graph:
        """Send a request and parse its N-Triples response."""
        client = await self._get_client()
        should_close = self._http_client is None
        request_headers = {"Accept": NTRIPLES, **(headers or {})}
        try:
            response = await client.request(method, url, headers=request_headers, data=data)
        except httpx.HTTPError as exc:
            raise RepositoryConnectionError(url, None, str(exc)) from exc
        finally:
            if should_close:
                await client.aclose()

        if response.status_code == 404:
            raise NotFoundError()
        if response.status_code >= 400:
            raise RepositoryConnectionError(url, response.status_code, response.text[:500])

        graph = Graph()
        if response.text.strip():
            graph.parse(data=response.text, format="nt")
        logger.debug("%s %s → %d triples", method, url, len(graph))
        return graph

    # ── MetadataSource ──────────────────────────────────────────────

    async def get_resource_by_ids(self, ids: list[str]) -> RepoResource:
        if not ids:
            raise NotFoundError(ids)
        config = SearchConfig(metadata_mode=MetadataMode.IDS.value)
        condition = SearchCondition(property=self.schema.id, value=[str(i) for i in ids])
        resources = await self.get_resources_by_search_terms([condition], config)
        if not resources:
            raise NotFoundError(ids)
        if len(resources) > 1:
            raise AmbiguousMatchError(sorted(r.uri for r in resources))
        return resources[0]

    async def get_graph_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> Graph:
        form: dict[str, list[str]] = {}
        for n, term in enumerate(terms):
            for key, value in term.to_form_data(n):
                form.setdefault(key, []).append(value)
        for key, value in config.to_form_data():
            form.setdefault(key, []).append(value)

        graph = await self._request(
            "POST", f"{self.base_url}search", headers=config.headers(self._header_names), data=form
        )
        self._mapper.extract_count(graph, config)
        return graph

    async def get_resources_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> list[RepoResource]:
        graph = await self.get_graph_by_search_terms(terms, config)
        return self._mapper.to_resources(graph, lambda uri: RepoResource(uri, self))

    async def load_resource_metadata(
        self, resource: RepoResource, mode: str, parent_property: str | None
    ) -> Graph:
        config = SearchConfig(metadata_mode=mode, metadata_parent_property=parent_property)
        return await self._request(
            "GET", f"{resource.uri}/metadata", headers=config.headers(self._header_names)
        )

    # ── Concurrency helper ──────────────────────────────────────────

    async def map(
        self,
        items: Iterable[T],
        func: Callable[[T], Awaitable[R]],
        concurrency: int | None = None,
        reject: RejectAction = RejectAction.FAIL,
    ) -> list[R | RepoLibError]:
        """Apply an async call to every item with at most ``concurrency`` in flight.

        Results keep the order of ``items``. A failing call (``RepoLibError``)
        is dropped, re-raised or returned in place of its result, depending
        on ``reject``. When it is re-raised the calls still running are
        cancelled.
        """
        semaphore = asyncio.Semaphore(concurrency or self._concurrency)

        async def run(item: T) -> Any:
            async with semaphore:
                try:
                    return await func(item)
                except RepoLibError as exc:
                    if reject == RejectAction.FAIL:
                        raise
                    logger.warning("Rejected %r: %s", item, exc.message)
                    return exc

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(run(item)) for item in items]
        except ExceptionGroup as failed:
            raise failed.exceptions[0]

        results = [task.result() for task in tasks]
        if reject == RejectAction.SKIP:
            return [r for r in results if not isinstance(r, RepoLibError)]
        return results
