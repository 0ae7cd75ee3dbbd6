# core/relay.py
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import web, ClientSession, TCPConnector, ClientTimeout, ClientError

from core.config_manager import DEFAULT_UPSTREAM_URL
from core.errors import (
    RelayError,
    MissingCredentialError,
    UpstreamRejectedError,
    UpstreamShapeError,
    UpstreamTransportError,
    PaginationLimitError,
    RequestDeadlineError,
)
from core.routes import Route, ROUTES, find_route

logger = logging.getLogger(__name__)

CREDENTIAL_HEADER = 'X-Holded-API-Key'
UPSTREAM_CREDENTIAL_HEADER = 'key'
ALLOWED_METHODS = 'GET, POST, OPTIONS'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': ALLOWED_METHODS,
    'Access-Control-Allow-Headers': f'Content-Type, {CREDENTIAL_HEADER}',
}


class HoldedRelay:
    def __init__(self, base_url: str = DEFAULT_UPSTREAM_URL, per_page: int = 50,
                 max_pages: int = 200, timeout: float = 30, connect_timeout: float = 10,
                 request_deadline: float = 120, routes: Optional[List[Route]] = None):
        """
        Args:
            base_url: Holded team API base URL
            per_page: Page size requested from paginated listings
            max_pages: Upper bound on pages fetched for one listing
            timeout: Total timeout of a single upstream call, seconds
            connect_timeout: Connect timeout of a single upstream call, seconds
            request_deadline: Upper bound on handling one inbound request, seconds
            routes: Route table, defaults to core.routes.ROUTES
        """
        self.base_url = base_url.rstrip('/')
        self.per_page = per_page
        self.max_pages = max_pages
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.request_deadline = request_deadline
        self.routes = ROUTES if routes is None else routes

        # Connection pool for upstream calls
        self.connector = None
        self.session = None

        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'upstream_calls': 0,
            'errors': 0
        }

    @classmethod
    def from_config(cls, upstream_config: Dict[str, Any]) -> 'HoldedRelay':
        """Builds a relay from the 'upstream' section of the configuration"""
        return cls(
            base_url=upstream_config.get('base_url', DEFAULT_UPSTREAM_URL),
            per_page=upstream_config.get('per_page', 50),
            max_pages=upstream_config.get('max_pages', 200),
            timeout=upstream_config.get('timeout', 30),
            connect_timeout=upstream_config.get('connect_timeout', 10),
            request_deadline=upstream_config.get('request_deadline', 120),
        )

    async def initialize(self):
        """Creates the upstream connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=100,
                limit_per_host=50,
                ttl_dns_cache=300,  # 5 minutes
                keepalive_timeout=60,
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=self.timeout, connect=self.connect_timeout)
            )

    async def cleanup(self):
        """Releases the upstream connection pool"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    async def on_startup(self, app: web.Application):
        await self.initialize()

    async def on_cleanup(self, app: web.Application):
        await self.cleanup()

    async def router(self, request: web.Request) -> web.StreamResponse:
        """Entry point for every inbound request"""
        self.stats['total_requests'] += 1

        # Preflight short-circuits routing and the credential check
        if request.method == 'OPTIONS':
            return self._handle_options(request)

        try:
            return await asyncio.wait_for(self._dispatch(request), timeout=self.request_deadline)
        except asyncio.TimeoutError:
            logger.error(
                f"⏱️ Request deadline exceeded\n"
                f"   Path: {request.rel_url.raw_path}\n"
                f"   Method: {request.method}\n"
                f"   Deadline: {self.request_deadline}s"
            )
            return self._error_response(RequestDeadlineError(
                'Request deadline exceeded',
                details=f'No response within {self.request_deadline} seconds',
            ))

    def _handle_options(self, request: web.Request) -> web.Response:
        """Answers CORS preflight requests"""
        headers = request.headers
        if (headers.get('Origin') is not None and
                headers.get('Access-Control-Request-Method') is not None and
                headers.get('Access-Control-Request-Headers') is not None):
            return web.Response(status=200, headers=CORS_HEADERS)

        # Plain OPTIONS, not a preflight
        return web.Response(status=204, headers={'Allow': ALLOWED_METHODS})

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        path = request.rel_url.raw_path

        api_key = request.headers.get(CREDENTIAL_HEADER)
        if not api_key:
            logger.warning(f"⚠️ No {CREDENTIAL_HEADER} header: {request.method} {path}")
            return self._error_response(MissingCredentialError())

        route, params = find_route(request.method, path, self.routes)
        if route is None:
            logger.info(f"🔍 No route for {request.method} {path}")
            return web.Response(text='Not Found', status=404, headers=CORS_HEADERS)

        logger.debug(
            f"🔑 Forwarding {route.name}\n"
            f"   Path: {path}\n"
            f"   Token length: {len(api_key)} chars"
        )

        try:
            if route.paginated:
                status, payload = 200, await self._fetch_all_pages(route, params, api_key)
            else:
                status, payload = await self._request_upstream(
                    route, route.upstream_url(self.base_url, params), api_key
                )
        except RelayError as e:
            return self._error_response(e)

        self.stats['total_responses'] += 1
        return web.json_response(payload, status=status, headers=CORS_HEADERS)

    async def _fetch_all_pages(self, route: Route, params: Dict[str, str], api_key: str) -> List[Any]:
        """
        Collects every page of a paginated listing into one list

        Pages are requested one after another until a page comes back
        shorter than per_page. Any failure discards what was collected.
        """
        url = route.upstream_url(self.base_url, params)
        records: List[Any] = []
        page = 1

        while True:
            if page > self.max_pages:
                logger.error(
                    f"❌ Pagination limit reached ({route.name}): "
                    f"{self.max_pages} full pages of {self.per_page}"
                )
                raise PaginationLimitError(
                    f'Pagination limit exceeded while fetching {route.container}',
                    details=f'Holded returned {self.max_pages} full pages of {self.per_page} records',
                )

            _, data = await self._request_upstream(
                route, url, api_key, query={'page': page, 'perPage': self.per_page}
            )

            page_records = data.get(route.container) if isinstance(data, dict) else None
            if not isinstance(page_records, list):
                logger.error(
                    f"❌ Holded API unexpected response format ({route.name}): "
                    f"expected '{route.container}' to be an array. Received: {data!r}"
                )
                raise UpstreamShapeError(
                    f'Unexpected response format from Holded API when fetching {route.container}'
                )

            records.extend(page_records)
            logger.debug(f"📄 Page {page}: {len(page_records)} {route.container}")

            if len(page_records) < self.per_page:
                return records
            page += 1

    async def _request_upstream(self, route: Route, url: str, api_key: str,
                                query: Optional[Dict[str, Any]] = None) -> Tuple[int, Any]:
        """
        Performs one upstream call

        Returns:
            Tuple[int, Any]: (status, parsed JSON body) of a 2xx response

        Raises:
            UpstreamRejectedError: Holded answered non-2xx
            UpstreamTransportError: network, timeout or JSON failure
        """
        await self.initialize()
        self.stats['upstream_calls'] += 1

        headers = {
            UPSTREAM_CREDENTIAL_HEADER: api_key,
            'Content-Type': 'application/json',
        }

        try:
            async with self.session.request(
                method=route.upstream_method,
                url=url,
                headers=headers,
                params=query
            ) as upstream_response:

                if not 200 <= upstream_response.status < 300:
                    error_body = await upstream_response.text(errors='replace')
                    logger.error(
                        f"❌ Holded API error ({route.name}): "
                        f"{upstream_response.status} {error_body}"
                    )
                    raise UpstreamRejectedError(route.failure_message, upstream_response.status, error_body)

                # Parsed regardless of the upstream Content-Type
                payload = await upstream_response.json(content_type=None)
                logger.debug(f"Holded response ({route.name}): {upstream_response.status}")
                return upstream_response.status, payload

        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            details = str(e) or e.__class__.__name__
            logger.error(f"❌ Error talking to Holded ({route.name}): {details}", exc_info=True)
            raise UpstreamTransportError(route.internal_error_message, details=details) from e

    def _error_response(self, error: RelayError) -> web.Response:
        self.stats['errors'] += 1
        return web.json_response(error.to_dict(), status=error.status, headers=CORS_HEADERS)

    def get_full_stats(self) -> Dict[str, int]:
        """Returns request counters"""
        return {
            'requests': self.stats['total_requests'],
            'responses': self.stats['total_responses'],
            'upstream_calls': self.stats['upstream_calls'],
            'errors': self.stats['errors']
        }


def create_app(relay: HoldedRelay) -> web.Application:
    """Builds the aiohttp application serving the relay"""
    app = web.Application()
    app.router.add_route('*', '/{path:.*}', relay.router)
    app.on_startup.append(relay.on_startup)
    app.on_cleanup.append(relay.on_cleanup)
    return app
