"""GitHub App authentication checks and installation token minting."""

from __future__ import annotations

import logging

import httpx

from keysmith.errors import GitHubAuthError
from keysmith.models import AuthResult, InstallationToken

log = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"


def _headers(app_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {app_token}", "Accept": GITHUB_ACCEPT}


def verify_app_jwt(http: httpx.Client, app_id: int | str, app_token: str) -> AuthResult:
    """Call ``GET /app`` with ``app_token`` and check GitHub reports ``app_id``.

    Never raises for HTTP or transport failures; the returned AuthResult
    carries the reason instead, so callers can tell a rejected key (non-2xx,
    id mismatch) from an unreachable API (no status code).
    """
    try:
        r = http.get("/app", headers=_headers(app_token))
    except httpx.HTTPError as exc:
        log.warning("GitHub /app request failed: %s", exc)
        return AuthResult(verified=False, reason=f"GitHub API request failed: {exc}")

    if not r.is_success:
        log.warning("GitHub /app returned HTTP %d: %s", r.status_code, r.text)
        return AuthResult(
            verified=False,
            status_code=r.status_code,
            reason=f"GitHub API error (HTTP {r.status_code}): {r.text}",
        )

    try:
        body = r.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return AuthResult(
            verified=False,
            status_code=r.status_code,
            reason="GitHub API returned an unexpected body for /app",
        )

    reported = body.get("id")
    if not isinstance(reported, int) or isinstance(reported, bool):
        return AuthResult(
            verified=False,
            status_code=r.status_code,
            reason=f"GitHub API returned no usable app id: {reported!r}",
        )

    if str(reported) != str(app_id):
        log.warning("App ID mismatch: expected %s, got %s", app_id, reported)
        return AuthResult(
            verified=False,
            app_id=reported,
            status_code=r.status_code,
            reason=f"App ID mismatch: expected {app_id}, got {reported}",
        )

    return AuthResult(verified=True, app_id=reported, status_code=r.status_code)


def require_app_jwt(http: httpx.Client, app_id: int | str, app_token: str) -> int:
    """Like :func:`verify_app_jwt` but raises GitHubAuthError on failure.

    Returns the App ID GitHub reported.
    """
    result = verify_app_jwt(http, app_id, app_token)
    if not result.verified:
        raise GitHubAuthError(f"App token authentication failed: {result.reason}")
    return result.app_id


def create_installation_token(
    http: httpx.Client,
    app_token: str,
    installation_id: int,
    repositories: list[str] | None = None,
) -> InstallationToken:
    """Create an installation access token (~1 hour validity).

    Args:
        http: Client with the GitHub API as its base URL.
        app_token: App JWT authenticating the request.
        installation_id: GitHub App installation ID.
        repositories: Optional repository names to scope the token to.
    """
    body: dict = {}
    if repositories:
        body["repositories"] = repositories

    r = http.post(
        f"/app/installations/{installation_id}/access_tokens",
        headers=_headers(app_token),
        json=body,
    )
    r.raise_for_status()

    data = r.json()
    if not data.get("token"):
        raise GitHubAuthError("GitHub API returned no installation access token")
    return InstallationToken(
        token=data["token"],
        expires_at=data.get("expires_at"),
        installation_id=installation_id,
    )
