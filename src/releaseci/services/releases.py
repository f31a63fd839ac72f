# services/releases.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote, urljoin

from ..errors import ExternalServiceFailure
from ..ui.console import get_console


class ReleaseService(Protocol):
    def create_release(self, tag_name: str, name: str, draft: bool, prerelease: bool) -> str: ...

    def upload_asset(self, upload_url: str, asset_path: str | Path, asset_name: str, content_type: str) -> bool: ...


def strip_url_template(upload_url: str) -> str:
    """`https://uploads.../assets{?name,label}` -> `https://uploads.../assets`"""
    return upload_url.split("{", 1)[0]


class GitHubReleases:
    """HTTP client for the GitHub releases API."""

    def __init__(self, repository: str, token: Optional[str], api_url: str = "https://api.github.com"):
        """
        Args:
            repository: "owner/name"
            token: API token with contents:write
            api_url: Base URL of the API
        """
        self.repository = repository
        self.token = token
        self.api_url = api_url.rstrip("/")

    def _request(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        content_type: str = "application/json",
    ) -> dict:
        """
        Make an HTTP request and return the parsed JSON body.

        Raises:
            ExternalServiceFailure: If the request fails
        """
        headers = {
            "Accept": "application/vnd.github+json",
            "Content-Type": content_type,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ExternalServiceFailure("release", f"API request failed: {e.code} {e.reason}", url=url, body=error_body[:500])
        except urllib.error.URLError as e:
            raise ExternalServiceFailure("release", f"Network error: {e.reason}", url=url)
        except json.JSONDecodeError as e:
            raise ExternalServiceFailure("release", f"Invalid JSON response: {e}", url=url)

    def create_release(self, tag_name: str, name: str, draft: bool = False, prerelease: bool = True) -> str:
        if not self.token:
            raise ExternalServiceFailure("release", "No release token configured", hint="Set GH_TOKEN or GITHUB_TOKEN.")

        url = urljoin(self.api_url + "/", f"repos/{self.repository}/releases")
        payload = {"tag_name": tag_name, "name": name, "draft": draft, "prerelease": prerelease}
        response = self._request("POST", url, json.dumps(payload).encode("utf-8"))

        upload_url = response.get("upload_url")
        if not upload_url:
            raise ExternalServiceFailure("release", "Release created without an upload_url", tag=tag_name)
        return strip_url_template(upload_url)

    def upload_asset(self, upload_url: str, asset_path: str | Path, asset_name: str, content_type: str) -> bool:
        path = Path(asset_path)
        if not path.is_file():
            raise ExternalServiceFailure("release", f"Asset not found: {path}")

        url = f"{strip_url_template(upload_url)}?name={quote(asset_name)}"
        self._request("POST", url, path.read_bytes(), content_type=content_type)
        return True


class DryRunReleases:
    def create_release(self, tag_name: str, name: str, draft: bool = False, prerelease: bool = True) -> str:
        get_console().print_info(f"(dry-run) would create release {name!r} (draft={draft}, prerelease={prerelease})")
        return f"dry-run://releases/{tag_name}/assets"

    def upload_asset(self, upload_url: str, asset_path: str | Path, asset_name: str, content_type: str) -> bool:
        get_console().print_info(f"(dry-run) would upload {asset_name} ({content_type}) to {upload_url}")
        return True
