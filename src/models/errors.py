"""Domain errors raised by the monitoring services.

The API layer maps the ``LookupError`` family to HTTP 404 and the
``ValueError`` family to HTTP 409; a failing session store is a 503.
"""

from __future__ import annotations


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class RouteNotFoundError(LookupError):
    def __init__(self, route_id: str) -> None:
        super().__init__(f"Route not found: {route_id}")
        self.route_id = route_id


class DispatchNotFoundError(LookupError):
    def __init__(self, dispatch_id: str) -> None:
        super().__init__(f"Dispatch not found: {dispatch_id}")
        self.dispatch_id = dispatch_id


class InvalidStatusTransitionError(ValueError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Ride cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class RouteLockedError(ValueError):
    def __init__(self, session_id: str, route_id: str) -> None:
        super().__init__(f"Session {session_id} is already monitoring its confirmed route; cannot switch to {route_id}")
        self.session_id = session_id
        self.route_id = route_id


class SessionClosedError(ValueError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} is {status}; monitoring has ended")
        self.session_id = session_id
        self.status = status


class RideNotStartedError(ValueError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} has no confirmed route yet; confirm a route before monitoring")
        self.session_id = session_id


class SessionStoreUnavailableError(ConnectionError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"Session store unavailable during '{operation}'")
        self.operation = operation
