"""
forge-server — Routing Tree Model and Flattener
=================================================

What:  Declarative route trees and the pass that turns them into concrete
       (method, path, handlers) records ready for registration.
How:   A tree is made of two frozen node types:

           RoutingGroup(url, children)      non-terminal, contributes a prefix
           Route(method, path, handlers)    terminal, one endpoint

       flatten() walks the tree depth-first and returns ResolvedRoute records
       in declaration order. The input tree is never modified; flattening the
       same tree twice yields the same paths.

Example:
    api = RoutingGroup("/api", [
        RoutingGroup("/users", [
            Route(Method.GET, "/", [list_users]),
            Route(Method.POST, "/", [check_payload, create_user],
                  disable_global_rate_limit=True,
                  rate_limit=RateLimitOptions(window_ms=60_000, max=5)),
        ]),
    ])
    flatten(api)  →  GET /api/users/ , POST /api/users/

Handler chains:
    Every handler except the last runs first, in order, as a FastAPI
    dependency (it may raise to short-circuit the chain). The last handler is
    the endpoint and produces the response.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from forge_server.exceptions import ConfigurationError
from forge_server.schemas.options import RateLimitOptions

Handler = Callable[..., Any]


class Method(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    PATCH = "PATCH"
    ALL = "ALL"


_CONCRETE_METHODS = [m for m in Method if m is not Method.ALL]

# Route method → HTTP verbs handed to the transport
METHOD_TABLE: Dict[Method, FrozenSet[str]] = {
    **{m: frozenset({m.value}) for m in _CONCRETE_METHODS},
    Method.ALL: frozenset(m.value for m in _CONCRETE_METHODS),
}


@dataclass(frozen=True)
class Route:
    """A terminal node: one method + path suffix bound to a handler chain."""

    method: Method
    path: str
    handlers: Tuple[Handler, ...]
    disable_global_rate_limit: bool = False
    rate_limit: Optional[RateLimitOptions] = None

    def __post_init__(self) -> None:
        try:
            method = Method(self.method.upper() if isinstance(self.method, str) else self.method)
        except ValueError:
            raise ConfigurationError(
                f"Unknown HTTP method '{self.method}' for route '{self.path}'",
                context={"path": self.path},
            ) from None
        handlers = tuple(self.handlers)
        if not handlers:
            raise ConfigurationError(
                f"Route '{self.path}' must declare at least one handler",
                context={"path": self.path},
            )
        for handler in handlers:
            if not callable(handler):
                raise ConfigurationError(
                    f"Route '{self.path}' has a non-callable handler: {handler!r}",
                    context={"path": self.path},
                )
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "handlers", handlers)


@dataclass(frozen=True)
class RoutingGroup:
    """A non-terminal node contributing `url` to every descendant's path."""

    url: str
    children: Tuple["RoutingNode", ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))


RoutingNode = Union[RoutingGroup, Route]


@dataclass(frozen=True)
class ResolvedRoute:
    """A flattened route with its fully-resolved path. `index` is declaration order."""

    index: int
    method: Method
    path: str
    handlers: Tuple[Handler, ...]
    disable_global_rate_limit: bool
    rate_limit: Optional[RateLimitOptions]

    @property
    def verbs(self) -> FrozenSet[str]:
        return METHOD_TABLE[self.method]

    @property
    def endpoint(self) -> Handler:
        return self.handlers[-1]

    @property
    def dependencies(self) -> Sequence[Handler]:
        return self.handlers[:-1]


def group_prefix(incoming: str, url: str) -> str:
    """A group whose url is '/' adds nothing, so the root never doubles slashes."""
    return incoming + ("" if url == "/" else url)


def flatten(node: RoutingNode, prefix: str = "") -> List[ResolvedRoute]:
    """
    Resolve every terminal route under `node` against `prefix`.

    Returns:
        ResolvedRoute records in depth-first declaration order.

    Raises:
        ConfigurationError if a node is neither a Route nor a RoutingGroup.
    """
    resolved: List[ResolvedRoute] = []
    _collect(node, prefix, resolved)
    return resolved


def _collect(node: RoutingNode, prefix: str, out: List[ResolvedRoute]) -> None:
    if isinstance(node, RoutingGroup):
        child_prefix = group_prefix(prefix, node.url)
        for child in node.children:
            _collect(child, child_prefix, out)
    elif isinstance(node, Route):
        out.append(
            ResolvedRoute(
                index=len(out),
                method=node.method,
                path=prefix + node.path,
                handlers=node.handlers,
                disable_global_rate_limit=node.disable_global_rate_limit,
                rate_limit=node.rate_limit,
            )
        )
    else:
        raise ConfigurationError(
            f"Routing tree nodes must be Route or RoutingGroup, got {type(node).__name__}"
        )
