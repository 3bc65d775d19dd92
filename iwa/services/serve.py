"""Local serving of one environment, with the routing rule hosts must apply.

Requests for `/{version}/{path}` that name a stored bundle object are served
with the immutable cache directive. Every other path gets the environment
document with `no-store`, so client-side routes resolve to the app.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlsplit

from iwa.core.result import Err, Ok, Result
from iwa.output.console import ConsoleProtocol, Style
from iwa.services.errors import DeployError, NoReleaseYet
from iwa.services.layout import bundle_key, document_key, validate_environment_name
from iwa.services.storage import (
    IMMUTABLE_CACHE_CONTROL,
    NO_STORE_CACHE_CONTROL,
    ObjectStore,
    invalid_key_reason,
)

__all__ = ["ServedObject", "make_server", "resolve_request"]


@dataclass(frozen=True, slots=True)
class ServedObject:
    status: int
    body: bytes
    content_type: str
    cache_control: str
    key: str | None = None


def _bundle_object_key(url_path: str) -> str | None:
    parts = [unquote(p) for p in url_path.split("/") if p]
    if len(parts) < 2:
        return None
    key = bundle_key(parts[0], "/".join(parts[1:]))
    if invalid_key_reason(key) is not None:
        return None
    return key


def resolve_request(
    store: ObjectStore, environment: str, url_path: str
) -> Result[ServedObject, DeployError]:
    """Map a request path to what the host should return."""
    valid = validate_environment_name(environment)
    if isinstance(valid, Err):
        return valid

    path = urlsplit(url_path).path
    key = _bundle_object_key(path)
    if key is not None:
        got = store.get(key)
        if isinstance(got, Err):
            return got
        if got.value is not None:
            return Ok(
                ServedObject(
                    status=int(HTTPStatus.OK),
                    body=got.value.body,
                    content_type=got.value.meta.content_type,
                    cache_control=IMMUTABLE_CACHE_CONTROL,
                    key=key,
                )
            )

    doc_key = document_key(environment)
    doc = store.get(doc_key)
    if isinstance(doc, Err):
        return doc
    if doc.value is None:
        return Err(NoReleaseYet(environment=environment))
    return Ok(
        ServedObject(
            status=int(HTTPStatus.OK),
            body=doc.value.body,
            content_type="text/html; charset=utf-8",
            cache_control=NO_STORE_CACHE_CONTROL,
            key=doc_key,
        )
    )


def make_server(
    *,
    store: ObjectStore,
    environment: str,
    host: str,
    port: int,
    console: ConsoleProtocol,
) -> ThreadingHTTPServer:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            self._respond(send_body=True)

        def do_HEAD(self) -> None:  # noqa: N802
            self._respond(send_body=False)

        def _respond(self, *, send_body: bool) -> None:
            result = resolve_request(store, environment, self.path)
            if isinstance(result, Err):
                status = (
                    HTTPStatus.NOT_FOUND
                    if isinstance(result.error, NoReleaseYet)
                    else HTTPStatus.SERVICE_UNAVAILABLE
                )
                served = ServedObject(
                    status=int(status),
                    body=(result.error.message + "\n").encode("utf-8"),
                    content_type="text/plain; charset=utf-8",
                    cache_control=NO_STORE_CACHE_CONTROL,
                )
            else:
                served = result.value

            self.send_response(served.status)
            self.send_header("Content-Type", served.content_type)
            self.send_header("Content-Length", str(len(served.body)))
            self.send_header("Cache-Control", served.cache_control)
            self.end_headers()
            if send_body:
                self.wfile.write(served.body)

        def log_message(self, format: str, *args: object) -> None:
            console.print(f"{self.address_string()} {format % args}", Style.DIM)

    return ThreadingHTTPServer((host, port), Handler)
