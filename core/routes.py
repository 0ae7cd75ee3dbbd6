# core/routes.py
"""
Route table of the relay.

Routes are evaluated in order; the first one whose method and path
match wins. ``{id}`` matches one path segment and is passed to the
upstream URL exactly as received.
"""

import re
from typing import Optional, Dict, Tuple, List


class Route:
    """One inbound route and how it maps onto the Holded API"""

    def __init__(self, name: str, method: str, pattern: str,
                 upstream_method: str, upstream_path: str,
                 failure_message: str, internal_error_message: str,
                 container: Optional[str] = None):
        """
        Args:
            name: Action name used in logs
            method: Inbound HTTP method
            pattern: Inbound path, may contain {id}
            upstream_method: HTTP method of the upstream call
            upstream_path: Path appended to the upstream base URL, may contain {id}
            failure_message: error text when Holded answers non-2xx
            internal_error_message: error text on local failures
            container: Field wrapping the records of a paginated listing;
                when set, all pages are aggregated into one array
        """
        self.name = name
        self.method = method
        self.pattern = pattern
        self.upstream_method = upstream_method
        self.upstream_path = upstream_path
        self.failure_message = failure_message
        self.internal_error_message = internal_error_message
        self.container = container
        self.regex = self._compile(pattern)

    @staticmethod
    def _compile(pattern: str):
        escaped = re.escape(pattern).replace(re.escape('{id}'), '(?P<id>[^/]+)')
        return re.compile(f'^{escaped}$')

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        """Returns captured path parameters, or None if the route doesn't apply"""
        if method != self.method:
            return None
        match = self.regex.match(path)
        if match is None:
            return None
        return match.groupdict()

    @property
    def paginated(self) -> bool:
        return self.container is not None

    def upstream_url(self, base_url: str, params: Dict[str, str]) -> str:
        return base_url.rstrip('/') + self.upstream_path.format(**params)

    def __repr__(self):
        return f"Route({self.method} {self.pattern} -> {self.upstream_method} {self.upstream_path})"


ROUTES: List[Route] = [
    Route(
        name='employees',
        method='GET',
        pattern='/api/employees',
        upstream_method='GET',
        upstream_path='/employees',
        failure_message='Failed to fetch employees from Holded',
        internal_error_message='Internal server error while fetching employees',
        container='employees',
    ),
    Route(
        name='clock-in',
        method='POST',
        pattern='/api/employees/{id}/clockin',
        upstream_method='POST',
        upstream_path='/employees/{id}/times/clockin',
        failure_message='Failed to clock in',
        internal_error_message='Internal server error during clock-in action',
    ),
    Route(
        name='clock-out',
        method='POST',
        pattern='/api/employees/{id}/clockout',
        upstream_method='POST',
        upstream_path='/employees/{id}/times/clockout',
        failure_message='Failed to clock out',
        internal_error_message='Internal server error during clock-out action',
    ),
    Route(
        name='employee-times',
        method='GET',
        pattern='/api/employees/{id}/times',
        upstream_method='GET',
        upstream_path='/employees/{id}/times',
        failure_message='Failed to fetch employee times',
        internal_error_message='Internal server error fetching employee times',
    ),
]


def find_route(method: str, path: str, routes: Optional[List[Route]] = None) -> Tuple[Optional[Route], Dict[str, str]]:
    """Returns the first matching route and its parameters, or (None, {})"""
    for route in (ROUTES if routes is None else routes):
        params = route.match(method, path)
        if params is not None:
            return route, params
    return None, {}
