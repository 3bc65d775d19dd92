from __future__ import annotations

import json
import re
from datetime import UTC, datetime

from iwa.services.document import asset_url, env_script, render_document
from iwa.services.model import Bundle, BundleFile

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _file(path: str, content_type: str = "text/javascript") -> BundleFile:
    return BundleFile(path=path, sha256="0" * 64, size=1, content_type=content_type)


def _bundle() -> Bundle:
    return Bundle(
        version="3f9c2a0b1c2d3e4f",
        fingerprint="3f9c2a0b1c2d3e4f" + "0" * 48,
        files=(
            _file("assets/app.css", "text/css"),
            _file("assets/logo.svg", "image/svg+xml"),
            _file("main.js"),
            _file("main.js.map", "application/json"),
            _file("vendor.mjs"),
        ),
        env_var_names=("API_URL",),
        published_at=T0,
    )


def test_asset_url_encodes_segments() -> None:
    assert asset_url("https://cdn.example.com/", "v1", "a b/c.js") == (
        "https://cdn.example.com/v1/a%20b/c.js"
    )


def test_env_script_is_sorted_json_safe_for_html() -> None:
    script = env_script({"B": "</script><!--", "A": 1, "C": True})
    assert script.startswith("window.env = {")
    assert "</script>" not in script
    assert "<!--" not in script
    payload = script.removeprefix("window.env = ").removesuffix(";")
    assert json.loads(payload) == {"A": 1, "B": "</script><!--", "C": True}
    assert payload.index('"A"') < payload.index('"B"') < payload.index('"C"')


def test_render_document_orders_env_before_assets() -> None:
    doc = render_document(
        environment="prod",
        bundle=_bundle(),
        base_url="https://cdn.example.com",
        variables={"API_URL": "https://api.example.com"},
        generated_at=T0,
    )

    html = doc.html
    base = "https://cdn.example.com/3f9c2a0b1c2d3e4f"
    env_at = html.index("window.env")
    assert env_at < html.index("app.css")
    assert env_at < html.index("main.js")
    assert f'<link rel="stylesheet" href="{base}/assets/app.css">' in html
    assert f'<script defer src="{base}/main.js"></script>' in html
    assert f'<script type="module" src="{base}/vendor.mjs">' in html
    assert 'rel="prefetch"' in html
    assert "main.js.map" not in html
    assert html.index("main.js") < html.index("vendor.mjs")
    assert '<meta name="iwa:environment" content="prod">' in html
    assert '<meta name="iwa:bundle" content="3f9c2a0b1c2d3e4f">' in html


def test_every_asset_url_is_fully_qualified() -> None:
    doc = render_document(
        environment="staging",
        bundle=_bundle(),
        base_url="https://cdn.example.com",
        variables={},
        generated_at=T0,
    )
    assert len(doc.asset_urls) == 4
    assert all(u.startswith("https://cdn.example.com/3f9c2a0b1c2d3e4f/") for u in doc.asset_urls)
    for match in re.finditer(r'(?:src|href)="([^"]+)"', doc.html):
        assert match.group(1).startswith("https://")


def test_documents_differ_only_in_environment_values() -> None:
    common = {"bundle": _bundle(), "base_url": "https://cdn.example.com", "generated_at": T0}
    prod = render_document(environment="prod", variables={"API_URL": "https://api"}, **common)
    staging = render_document(
        environment="staging", variables={"API_URL": "https://staging-api"}, **common
    )
    assert prod.asset_urls == staging.asset_urls
    assert prod.html != staging.html
    assert prod.variables == {"API_URL": "https://api"}


def _script_srcs(html: str) -> list[str]:
    return re.findall(r'<script[^>]* src="[^"]*/([^"/]+)"', html)


def test_classic_scripts_block_without_modules() -> None:
    bundle = Bundle(
        version="v1",
        fingerprint="f" * 64,
        files=(_file("runtime.js"), _file("vendor.js"), _file("main.js")),
        env_var_names=(),
        published_at=T0,
        entries=("runtime.js", "vendor.js", "main.js"),
    )

    html = render_document(
        environment="prod",
        bundle=bundle,
        base_url="https://cdn.example.com",
        variables={},
        generated_at=T0,
    ).html

    assert _script_srcs(html) == ["runtime.js", "vendor.js", "main.js"]
    assert "defer" not in html
    assert 'type="module"' not in html


def test_mixed_classic_and_module_scripts_keep_listed_order() -> None:
    bundle = Bundle(
        version="v1",
        fingerprint="f" * 64,
        files=(_file("polyfills.js"), _file("app.mjs"), _file("analytics.js")),
        env_var_names=(),
        published_at=T0,
    )

    html = render_document(
        environment="prod",
        bundle=bundle,
        base_url="https://cdn.example.com",
        variables={},
        generated_at=T0,
    ).html

    assert _script_srcs(html) == ["polyfills.js", "app.mjs", "analytics.js"]
    assert '<script defer src="https://cdn.example.com/v1/polyfills.js"></script>' in html
    assert '<script type="module" src="https://cdn.example.com/v1/app.mjs"></script>' in html
    assert '<script defer src="https://cdn.example.com/v1/analytics.js"></script>' in html
    # Only the inline env script may run before the deferred queue.
    assert re.findall(r"<script>", html) == ["<script>"]


def test_source_maps_are_not_referenced() -> None:
    doc = render_document(
        environment="prod",
        bundle=_bundle(),
        base_url="https://cdn.example.com",
        variables={},
        generated_at=T0,
    )
    assert not any(u.endswith(".map") for u in doc.asset_urls)
    assert ".map" not in doc.html
