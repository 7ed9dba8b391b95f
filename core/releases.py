"""Turns whatever the user pasted into a downloadable whisper.cpp archive URL.

The chain stops at the first step that yields a URL:

1. a direct asset URL is used unchanged;
2. a GitHub release page is looked up through the releases API and the first
   asset matching the host platform is taken;
3. the rendered release page is scanned for ``/releases/download/...zip`` links;
4. the release tag is read from the page and conventionally named assets are
   probed with a one-byte range request.
"""
import logging
import platform
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx

from config import USER_AGENT, PROBE_TIMEOUT, WHISPER_RELEASE_SOURCES, WHISPER_RELEASES_BACKUP
from core.errors import NetworkError, NotFoundError

logger = logging.getLogger(__name__)

ARCHIVE_EXT = ".zip"

_GITHUB_PAGE_RE = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)/releases(?:/tag/([^/\s?#]+))?")
_API_REPO_RE    = re.compile(r"api\.github\.com/repos/([^/\s]+)/([^/\s?#]+)")
_TAG_RE         = re.compile(r"/releases/tag/([^\"'?#<\s]+)")
_ASSET_LINK_RE  = re.compile(
    r"(?:https://github\.com)?(/[^\"'<>\s/]+/[^\"'<>\s/]+/releases/download/[^\"'<>\s]+?\.zip)"
)


@dataclass(frozen=True)
class PlatformTokens:
    os_tokens: Tuple[str, ...]
    arch_tokens: Tuple[str, ...]
    slug: str                       # used to build conventional asset names

    def matches(self, name: str) -> bool:
        name_lc = name.lower()
        return (
            any(t in name_lc for t in self.arch_tokens)
            and any(t in name_lc for t in self.os_tokens)
            and name_lc.endswith(ARCHIVE_EXT)
        )


MACOS_ARM64   = PlatformTokens(("macos", "osx", "darwin", "apple"), ("arm64", "aarch64"), "macos-arm64")
MACOS_X64     = PlatformTokens(("macos", "osx", "darwin", "apple"), ("x86_64", "x64", "amd64"), "macos-x64")
LINUX_X64     = PlatformTokens(("linux", "ubuntu"), ("x86_64", "x64", "amd64"), "linux-x64")
LINUX_ARM64   = PlatformTokens(("linux", "ubuntu"), ("arm64", "aarch64"), "linux-arm64")
WINDOWS_X64   = PlatformTokens(("win", "windows"), ("x64", "x86_64", "amd64"), "win-x64")


def host_platform() -> PlatformTokens:
    system = platform.system().lower()
    arm = platform.machine().lower() in ("arm64", "aarch64")
    if system == "darwin":
        return MACOS_ARM64 if arm else MACOS_X64
    if system == "windows":
        return WINDOWS_X64
    return LINUX_ARM64 if arm else LINUX_X64


def _headers(**extra) -> dict:
    headers = {"User-Agent": USER_AGENT}
    headers.update(extra)
    return headers


def is_direct_asset_url(url: str) -> bool:
    path = url.split("?", 1)[0].lower()
    return path.endswith(ARCHIVE_EXT) or "/releases/download/" in path


def github_release_api_url(url: str) -> Optional[str]:
    """Maps a github.com release page (or API URL) to the releases API resource."""
    m = _API_REPO_RE.search(url)
    if m:
        return url
    m = _GITHUB_PAGE_RE.search(url)
    if not m:
        return None
    owner, repo, tag = m.groups()
    if tag:
        return f"https://api.github.com/repos/{owner}/{repo}/releases/tags/{tag}"
    return f"https://api.github.com/repos/{owner}/{repo}/releases/latest"


def github_repo_url(url: str) -> Optional[str]:
    m = _API_REPO_RE.search(url) or _GITHUB_PAGE_RE.search(url)
    if not m:
        return None
    return f"https://github.com/{m.group(1)}/{m.group(2)}"


def extract_latest_tag(html: str) -> Optional[str]:
    m = _TAG_RE.search(html)
    return m.group(1) if m else None


def find_asset_links(html: str) -> List[str]:
    return [f"https://github.com{path}" for path in _ASSET_LINK_RE.findall(html)]


def pick_asset(assets: Iterable[dict], tokens: PlatformTokens) -> Optional[str]:
    for asset in assets:
        name = asset.get("name") or ""
        url = asset.get("browser_download_url") or ""
        if url and tokens.matches(name):
            return url
    return None


def candidate_asset_names(tag: str, tokens: PlatformTokens) -> List[str]:
    version = tag.lstrip("v")
    names = []
    for flavour in ("-metal", "-accelerate", ""):
        names.append(f"whisper-cpp-{version}-{tokens.slug}{flavour}{ARCHIVE_EXT}")
        names.append(f"whisper-cpp-v{version}-{tokens.slug}{flavour}{ARCHIVE_EXT}")
    names.append(f"whisper-cpp-{tokens.slug}-metal{ARCHIVE_EXT}")
    names.append(f"whisper-cpp-{tokens.slug}{ARCHIVE_EXT}")
    return names


async def probe_download_url(client: httpx.AsyncClient, url: str) -> bool:
    """Cheap existence check: asks for the first byte only."""
    try:
        resp = await client.get(url, headers=_headers(Range="bytes=0-0"), timeout=PROBE_TIMEOUT)
    except httpx.HTTPError as e:
        logger.debug(f"Probe failed for {url}: {e}")
        return False
    return resp.is_success or resp.is_redirect


async def _assets_from_api(client: httpx.AsyncClient, api_url: str) -> List[dict]:
    try:
        resp = await client.get(api_url, headers=_headers(
            Accept="application/vnd.github+json",
            **{"X-GitHub-Api-Version": "2022-11-28"},
        ))
    except httpx.HTTPError as e:
        logger.warning(f"GitHub API request failed: {e}")
        return []
    if not resp.is_success:
        logger.warning(f"GitHub API error: {resp.status_code} {resp.text[:200]}")
        return []
    try:
        data = resp.json()
    except ValueError:
        logger.warning("Invalid GitHub API response")
        return []
    if isinstance(data, list):
        data = data[0] if data else {}
    return list(data.get("assets") or [])


async def _asset_from_html(client: httpx.AsyncClient, page_url: str,
                           tokens: PlatformTokens) -> Tuple[Optional[str], Optional[str]]:
    """Returns (asset_url, tag) found on the rendered release page."""
    try:
        resp = await client.get(page_url, headers=_headers())
    except httpx.HTTPError as e:
        logger.warning(f"GitHub HTML request failed: {e}")
        return None, None
    if not resp.is_success:
        return None, None
    html = resp.text
    links = find_asset_links(html)
    best = next((u for u in links if tokens.matches(u.rsplit("/", 1)[-1])), None)
    if best is None and links:
        best = links[0]
    return best, extract_latest_tag(html)


async def resolve_whisper_download_url(url: str, client: httpx.AsyncClient,
                                       tokens: Optional[PlatformTokens] = None) -> str:
    tokens = tokens or host_platform()
    url = url.strip()
    if not url:
        raise NotFoundError("Whisper download URL is empty.")
    url = url.replace("http://", "https://", 1)

    if is_direct_asset_url(url):
        return url

    api_url = github_release_api_url(url)
    if api_url is None:
        # Not a release page; let the downloader try it as-is.
        return url

    asset = pick_asset(await _assets_from_api(client, api_url), tokens)
    if asset:
        logger.info(f"Resolved whisper asset from release API: {asset}")
        return asset

    repo_url = github_repo_url(url)
    tag_match = _GITHUB_PAGE_RE.search(url)
    page_tag = tag_match.group(3) if tag_match else None
    page_url = f"{repo_url}/releases/tag/{page_tag}" if page_tag else f"{repo_url}/releases/latest"

    asset, tag = await _asset_from_html(client, page_url, tokens)
    if asset:
        logger.info(f"Resolved whisper asset from release page: {asset}")
        return asset

    tag = page_tag or tag
    if tag:
        for name in candidate_asset_names(tag, tokens):
            candidate = f"{repo_url}/releases/download/{tag}/{name}"
            if await probe_download_url(client, candidate):
                logger.info(f"Resolved whisper asset by probing: {candidate}")
                return candidate

    raise NotFoundError(
        f"No {tokens.slug} {ARCHIVE_EXT} asset found in GitHub release. "
        f"Paste a direct {ARCHIVE_EXT} asset URL from the release."
    )


async def latest_whisper_release_url(client: httpx.AsyncClient,
                                     tokens: Optional[PlatformTokens] = None) -> str:
    """Scans the known whisper.cpp release sources for a prebuilt archive."""
    tokens = tokens or host_platform()
    for source in WHISPER_RELEASE_SOURCES + (WHISPER_RELEASES_BACKUP,):
        assets = await _assets_from_api(client, source)
        for asset in assets:
            name = (asset.get("name") or "").lower()
            loose = name.endswith(ARCHIVE_EXT) and "whisper" in name \
                and any(t in name for t in tokens.arch_tokens)
            if tokens.matches(name) or loose:
                return asset.get("browser_download_url") or ""
    raise NetworkError(f"No {tokens.slug} {ARCHIVE_EXT} asset found in latest release.")
