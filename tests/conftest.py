"""Pytest fixtures. Run from project root with: pytest tests/ -v"""

import asyncio
import sys
from pathlib import Path

import pytest
from aiohttp import web

# Ensure the project root is on path so imports like core.*, utils.* work
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core import config_manager  # noqa: E402
from core.relay import HoldedRelay, create_app  # noqa: E402

UPSTREAM_PREFIX = '/api/team/v1'


class FakeHolded:
    """
    Stand-in for the Holded team API.

    employee_pages: one entry per page; an int yields that many records,
    a dict is returned as the JSON body, a (status, text or bytes) tuple is
    returned verbatim. Pages past the end are empty.
    responses: (method, path) -> (status, payload); bytes payloads are
    sent raw, str payloads as text, anything else as JSON.
    """

    def __init__(self):
        self.calls = []
        self.employee_pages = []
        self.responses = {}
        self.delay = 0
        self.server = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route('*', '/{tail:.*}', self.handle)
        return app

    @property
    def base_url(self) -> str:
        return str(self.server.make_url(UPSTREAM_PREFIX))

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.calls.append({
            'method': request.method,
            'path': request.rel_url.raw_path,
            'query': dict(request.query),
            'headers': dict(request.headers),
            'body': await request.read(),
        })
        if self.delay:
            await asyncio.sleep(self.delay)

        path = request.rel_url.raw_path
        if request.method == 'GET' and path == f'{UPSTREAM_PREFIX}/employees':
            return self._employee_page(int(request.query['page']))

        status, payload = self.responses.get((request.method, path), (404, 'no such endpoint'))
        if isinstance(payload, bytes):
            return web.Response(status=status, body=payload)
        if isinstance(payload, str):
            return web.Response(status=status, text=payload)
        return web.json_response(payload, status=status)

    def _employee_page(self, page: int) -> web.Response:
        entry = self.employee_pages[page - 1] if page <= len(self.employee_pages) else 0
        if isinstance(entry, int):
            employees = [{'id': f'emp-{page}-{i}', 'page': page} for i in range(entry)]
            return web.json_response({'employees': employees})
        if isinstance(entry, dict):
            return web.json_response(entry)
        status, body = entry
        if isinstance(body, bytes):
            return web.Response(status=status, body=body)
        return web.Response(status=status, text=body)


@pytest.fixture(autouse=True)
def _isolated_app_data(tmp_path, monkeypatch):
    """Keep config and logs out of the project tree"""
    monkeypatch.setenv('HOLDED_RELAY_HOME', str(tmp_path / 'app_data'))
    monkeypatch.setattr(config_manager, '_config_instance', None)


@pytest.fixture
async def holded(aiohttp_server):
    fake = FakeHolded()
    fake.server = await aiohttp_server(fake.make_app())
    return fake


@pytest.fixture
def make_client(aiohttp_client, holded):
    """Returns a factory: await make_client(**relay_kwargs) -> (relay, test client)"""

    async def factory(**kwargs):
        kwargs.setdefault('base_url', holded.base_url)
        relay = HoldedRelay(**kwargs)
        client = await aiohttp_client(create_app(relay))
        return relay, client

    return factory


@pytest.fixture
async def client(make_client):
    _, test_client = await make_client()
    return test_client
