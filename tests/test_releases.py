import asyncio

import httpx
import pytest

from core.errors import NotFoundError, NetworkError
from core.releases import (
    MACOS_ARM64, LINUX_X64, candidate_asset_names, extract_latest_tag, find_asset_links,
    github_release_api_url, is_direct_asset_url, latest_whisper_release_url, pick_asset,
    resolve_whisper_download_url,
)

REPO = "https://github.com/acme/whisper-bin"
ASSET = f"{REPO}/releases/download/v1.7.1/whisper-cpp-1.7.1-macos-arm64.zip"


def resolve(url, handler, tokens=MACOS_ARM64):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await resolve_whisper_download_url(url, client, tokens)
    return asyncio.run(go())


def test_url_helpers():
    assert is_direct_asset_url(ASSET)
    assert is_direct_asset_url("https://example.com/whisper.ZIP?x=1")
    assert not is_direct_asset_url(f"{REPO}/releases/latest")
    assert github_release_api_url(f"{REPO}/releases/latest") == \
        "https://api.github.com/repos/acme/whisper-bin/releases/latest"
    assert github_release_api_url(f"{REPO}/releases/tag/v1.2.0") == \
        "https://api.github.com/repos/acme/whisper-bin/releases/tags/v1.2.0"
    assert github_release_api_url("https://example.com/file") is None


def test_html_scraping():
    html = (
        '<a href="/acme/whisper-bin/releases/tag/v1.7.1">v1.7.1</a>'
        '<a href="/acme/whisper-bin/releases/download/v1.7.1/whisper-cpp-linux-x64.zip">x</a>'
        '<a href="https://github.com/acme/whisper-bin/releases/download/v1.7.1/whisper-cpp-1.7.1-macos-arm64.zip">y</a>'
    )
    assert extract_latest_tag(html) == "v1.7.1"
    assert find_asset_links(html) == [
        f"{REPO}/releases/download/v1.7.1/whisper-cpp-linux-x64.zip",
        ASSET,
    ]


def test_pick_asset_matches_platform_tokens():
    assets = [
        {"name": "whisper-cpp-linux-x64.zip", "browser_download_url": "linux"},
        {"name": "whisper-cpp-macos-arm64.tar.gz", "browser_download_url": "tarball"},
        {"name": "whisper-cpp-macos-arm64.zip", "browser_download_url": "mac"},
    ]
    assert pick_asset(assets, MACOS_ARM64) == "mac"
    assert pick_asset(assets, LINUX_X64) == "linux"
    assert candidate_asset_names("v1.7.1", MACOS_ARM64)[0] == "whisper-cpp-1.7.1-macos-arm64-metal.zip"


def test_direct_and_foreign_urls_are_returned_unchanged():
    def handler(request):
        raise AssertionError("no network expected")

    assert resolve("http://example.com/whisper.zip", handler) == "https://example.com/whisper.zip"
    assert resolve("https://example.com/whisper", handler) == "https://example.com/whisper"
    with pytest.raises(NotFoundError):
        resolve("   ", handler)


def test_release_api_asset():
    def handler(request):
        assert request.url.host == "api.github.com"
        return httpx.Response(200, json={"assets": [
            {"name": "whisper-cpp-1.7.1-macos-arm64.zip", "browser_download_url": ASSET},
        ]})

    assert resolve(f"{REPO}/releases/latest", handler) == ASSET


def test_falls_back_to_release_page_html():
    def handler(request):
        if request.url.host == "api.github.com":
            return httpx.Response(403, text="rate limited")
        assert request.url.path == "/acme/whisper-bin/releases/latest"
        return httpx.Response(200, text=f'<a href="{ASSET[len("https://github.com"):]}">mac</a>')

    assert resolve(f"{REPO}/releases/latest", handler) == ASSET


def test_falls_back_to_probing_conventional_names():
    probed = []

    def handler(request):
        if request.url.host == "api.github.com":
            return httpx.Response(200, json={"assets": []})
        if "/releases/download/" in request.url.path:
            probed.append(request)
            assert request.headers["Range"] == "bytes=0-0"
            if request.url.path.endswith("whisper-cpp-1.7.1-macos-arm64.zip"):
                return httpx.Response(206, content=b"P")
            return httpx.Response(404)
        return httpx.Response(200, text='<a href="/acme/whisper-bin/releases/tag/v1.7.1">v1.7.1</a>')

    assert resolve(f"{REPO}/releases/latest", handler) == ASSET
    assert len(probed) > 1


def test_no_asset_anywhere():
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(NotFoundError, match="Paste a direct .zip asset URL"):
        resolve(f"{REPO}/releases/latest", handler)


def test_latest_release_url():
    def handler(request):
        return httpx.Response(200, json=[{"assets": [
            {"name": "whisper-bin-linux-x64.zip", "browser_download_url": "https://x/linux.zip"},
        ]}])

    async def go(handler):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await latest_whisper_release_url(client, LINUX_X64)

    assert asyncio.run(go(handler)) == "https://x/linux.zip"
    with pytest.raises(NetworkError):
        asyncio.run(go(lambda request: httpx.Response(500)))
