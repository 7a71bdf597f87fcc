"""Deploy change detectors used by the scheduled trigger.

Each detector returns an opaque identifier of the latest upstream change
(a commit SHA or a deployment id), or None when it cannot tell.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from constants import USER_AGENT
from settings import Settings

__all__ = [
    "build_session",
    "latest_github_commit",
    "latest_cloudflare_deploy",
    "get_detector",
    "detect_latest_change",
]

DETECTOR_TIMEOUT = 10
GITHUB_API = "https://api.github.com"
CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"

Detector = Callable[[requests.Session, Settings], Optional[str]]


def build_session() -> requests.Session:
    """Create a configured `requests.Session` with retries and headers."""
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.6,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    return session


def latest_github_commit(session: requests.Session, settings: Settings) -> Optional[str]:
    """Head commit SHA of the configured branch."""
    if not settings.github_repo:
        return None
    headers: Dict[str, str] = {}
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    resp = session.get(
        f"{GITHUB_API}/repos/{settings.github_repo}/branches/{settings.github_branch}",
        headers=headers,
        timeout=DETECTOR_TIMEOUT,
    )
    if resp.status_code != 200:
        return None
    data: Any = resp.json()
    commit = data.get("commit") if isinstance(data, dict) else None
    sha = commit.get("sha") if isinstance(commit, dict) else None
    return str(sha) if sha else None


def latest_cloudflare_deploy(session: requests.Session, settings: Settings) -> Optional[str]:
    """Id of the newest Cloudflare Pages deployment of the configured project."""
    if not (
        settings.cloudflare_api_token
        and settings.cloudflare_account_id
        and settings.cloudflare_pages_project
    ):
        return None
    url = (
        f"{CLOUDFLARE_API}/accounts/{settings.cloudflare_account_id}"
        f"/pages/projects/{settings.cloudflare_pages_project}/deployments"
    )
    resp = session.get(
        url,
        params={"per_page": 1},
        headers={"Authorization": f"Bearer {settings.cloudflare_api_token}"},
        timeout=DETECTOR_TIMEOUT,
    )
    if resp.status_code != 200:
        return None
    data: Any = resp.json()
    result = data.get("result") if isinstance(data, dict) else None
    # The API has returned both a bare list and {"deployments": [...]}.
    if isinstance(result, dict):
        result = result.get("deployments")
    if not isinstance(result, list) or not result or not isinstance(result[0], dict):
        return None
    first = result[0]
    deploy_id = first.get("id") or first.get("deployment_id") or first.get("short_id")
    return str(deploy_id) if deploy_id else None


def get_detector(name: str) -> Detector:
    if name == "cloudflare":
        return latest_cloudflare_deploy
    return latest_github_commit


def detect_latest_change(settings: Settings, session: Optional[requests.Session] = None) -> Optional[str]:
    """Run the configured detector; network and decoding errors propagate."""
    detector = get_detector(settings.detector)
    own_session = session is None
    http = session if session is not None else build_session()
    try:
        return detector(http, settings)
    finally:
        if own_session:
            http.close()
