"""Git remote URL parsing for provider-linked deployments.

Hosts are compared exactly after strict parsing; substring matching on the raw
URL is never used, so ``https://github.com.evil.example/...`` does not resolve
to GitHub.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

KNOWN_GIT_HOSTS: dict[str, str] = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "bitbucket.org": "bitbucket",
}

_ALLOWED_SCHEMES = frozenset({"https", "http", "ssh", "git", "git+ssh"})
_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_HOSTNAME_PATTERN = re.compile(rf"{_LABEL}(?:\.{_LABEL})+")
_SCP_PATTERN = re.compile(r"[A-Za-z0-9._-]+@([A-Za-z0-9.-]+):(?!/)([^\s]+)")
_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._/-]")


@dataclass(slots=True, frozen=True)
class GitRepoRef:
    """Parsed remote: ``provider`` is None for hosts outside ``KNOWN_GIT_HOSTS``."""

    provider: str | None
    path: str

    @property
    def is_empty(self) -> bool:
        return not self.path


EMPTY_REF = GitRepoRef(provider=None, path="")


def parse_git_url(url: str) -> GitRepoRef:
    """Extract ``owner/repo`` and the hosting provider from a git remote URL.

    Unparseable input yields an empty ref instead of raising.
    """

    candidate = url.strip()
    if not candidate:
        return EMPTY_REF

    if "://" in candidate:
        return _parse_absolute_url(candidate)

    match = _SCP_PATTERN.fullmatch(candidate)
    if match is None:
        return EMPTY_REF
    host = match.group(1).lower()
    if not _HOSTNAME_PATTERN.fullmatch(host):
        return EMPTY_REF
    return _build_ref(host, match.group(2))


def _parse_absolute_url(candidate: str) -> GitRepoRef:
    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
        # Accessing port validates it; a malformed port raises ValueError.
        _ = parts.port
    except ValueError:
        return EMPTY_REF
    if parts.scheme.lower() not in _ALLOWED_SCHEMES or not hostname:
        return EMPTY_REF
    if not _HOSTNAME_PATTERN.fullmatch(hostname):
        return EMPTY_REF
    return _build_ref(hostname, parts.path)


def _build_ref(host: str, raw_path: str) -> GitRepoRef:
    segments = [segment for segment in raw_path.split("/") if segment]
    if len(segments) < 2:  # noqa: PLR2004
        return EMPTY_REF
    owner, repo = segments[0], segments[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    path = _UNSAFE_PATH_CHARS.sub("", f"{owner}/{repo}")
    owner_clean, _, repo_clean = path.partition("/")
    if not owner_clean or not repo_clean or ".." in path or owner_clean.startswith("."):
        return EMPTY_REF
    return GitRepoRef(provider=KNOWN_GIT_HOSTS.get(host), path=path)
