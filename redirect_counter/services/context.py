"""
Immutable snapshot of the request data the routing pipeline needs.
"""
from dataclasses import dataclass
from starlette.requests import Request


@dataclass(frozen=True)
class RequestContext:
    host: str
    path: str = "/"
    # Path as sent on the wire, percent-encoding intact
    raw_path: str = ""
    query: str = ""
    scheme: str = "http"
    client_ip: str = ""
    user_agent: str = ""
    referer: str = ""

    @property
    def request_path(self) -> str:
        return self.raw_path or self.path or "/"

    @property
    def source_url(self) -> str:
        url = f"{self.scheme}://{self.host}{self.request_path}"
        return f"{url}?{self.query}" if self.query else url

    @classmethod
    def from_scope(cls, scope: dict, trust_proxy: bool = False) -> "RequestContext":
        """Build from a raw ASGI http scope (usable before any Request object exists)."""
        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers") or []}
        client = scope.get("client")
        client_ip = client[0] if client else ""
        if trust_proxy and headers.get("x-forwarded-for"):
            client_ip = headers["x-forwarded-for"].split(",")[0].strip()
        scheme = scope.get("scheme", "http")
        if trust_proxy and headers.get("x-forwarded-proto"):
            scheme = headers["x-forwarded-proto"].split(",")[0].strip()
        return cls(
            host=headers.get("host", "").strip().lower(),
            path=scope.get("path") or "/",
            raw_path=(scope.get("raw_path") or b"").decode("latin-1"),
            query=(scope.get("query_string") or b"").decode("latin-1"),
            scheme=scheme,
            client_ip=client_ip,
            user_agent=headers.get("user-agent", ""),
            referer=headers.get("referer", ""),
        )

    @classmethod
    def from_request(cls, request: Request, trust_proxy: bool = False) -> "RequestContext":
        return cls.from_scope(request.scope, trust_proxy)
