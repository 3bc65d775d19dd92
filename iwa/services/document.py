"""Environment document rendering.

The environment document is the only thing that differs between
environments. It carries two things, in this order:

1. an inline script assigning `window.env`, evaluated before any
   application code runs
2. fully-qualified references to the bundle's assets, in bundle load order

Scripts execute in the listed order. Without `.mjs` assets they are plain
blocking `<script src>` tags. Module scripts are always deferred, so when a
bundle has any, its classic scripts get `defer` as well: deferred and module
scripts share one queue that runs in document order after parsing.

Source maps (`.map`) are never referenced; browsers fetch them through the
`sourceMappingURL` comment only when developer tools ask for them.
"""

from __future__ import annotations

import json
from datetime import datetime
from html import escape
from urllib.parse import quote

from iwa.services.model import Bundle, EnvironmentDocument, Variables, format_timestamp

__all__ = ["asset_url", "env_script", "render_document"]

_SCRIPT_SUFFIXES = (".js", ".mjs")
_MODULE_SUFFIXES = (".mjs",)
_STYLE_SUFFIXES = (".css",)
_SKIP_SUFFIXES = (".map",)


def asset_url(base_url: str, version: str, path: str) -> str:
    encoded = "/".join(quote(part) for part in path.split("/"))
    return f"{base_url.rstrip('/')}/{quote(version)}/{encoded}"


def env_script(variables: Variables) -> str:
    payload = json.dumps(variables, sort_keys=True, ensure_ascii=True)
    # Keep the payload from closing the script element or opening a comment.
    payload = payload.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return f"window.env = {payload};"


def _asset_tag(url: str, path: str, *, defer_scripts: bool) -> str:
    lowered = path.lower()
    href = escape(url, quote=True)
    if lowered.endswith(_STYLE_SUFFIXES):
        return f'<link rel="stylesheet" href="{href}">'
    if lowered.endswith(_MODULE_SUFFIXES):
        return f'<script type="module" src="{href}"></script>'
    if lowered.endswith(_SCRIPT_SUFFIXES):
        if defer_scripts:
            return f'<script defer src="{href}"></script>'
        return f'<script src="{href}"></script>'
    return f'<link rel="prefetch" href="{href}">'


def render_document(
    *,
    environment: str,
    bundle: Bundle,
    base_url: str,
    variables: Variables,
    generated_at: datetime,
    title: str | None = None,
) -> EnvironmentDocument:
    head: list[str] = []
    body: list[str] = []
    urls: list[str] = []
    defer_scripts = any(f.path.lower().endswith(_MODULE_SUFFIXES) for f in bundle.files)

    for f in bundle.files:
        if f.path.lower().endswith(_SKIP_SUFFIXES):
            continue
        url = asset_url(base_url, bundle.version, f.path)
        urls.append(url)
        tag = _asset_tag(url, f.path, defer_scripts=defer_scripts)
        if f.path.lower().endswith(_SCRIPT_SUFFIXES):
            body.append(tag)
        else:
            head.append(tag)

    lines = [
        "<!doctype html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1">',
        f'<meta name="iwa:environment" content="{escape(environment, quote=True)}">',
        f'<meta name="iwa:bundle" content="{escape(bundle.version, quote=True)}">',
        f'<meta name="iwa:generated" content="{format_timestamp(generated_at)}">',
        f"<title>{escape(title or environment)}</title>",
        f"<script>{env_script(variables)}</script>",
        *head,
        "</head>",
        "<body>",
        '<div id="root"></div>',
        *body,
        "</body>",
        "</html>",
    ]

    return EnvironmentDocument(
        environment=environment,
        bundle_version=bundle.version,
        asset_urls=tuple(urls),
        variables=dict(variables),
        generated_at=generated_at,
        html="\n".join(lines) + "\n",
    )
