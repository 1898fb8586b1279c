"""Remote release tag listing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from services.provision.cancellation import CancelToken
from services.provision.models import ProvisionError
from services.provision.transport import RetrievingClient
from services.provision.versioning import normalise_tag, sort_versions

_LOGGER = logging.getLogger(__name__)

__all__ = ["ReleaseTag", "list_release_tags"]


@dataclass(frozen=True)
class ReleaseTag:
    name: str
    version: str
    commit: str | None = None


def list_release_tags(
    client: RetrievingClient,
    url: str,
    cancel_token: CancelToken | None = None,
) -> list[ReleaseTag]:
    """Return release tags published at ``url``, newest version first.

    Tags whose name is not a version are skipped.
    """

    body = client.fetch(url, cancel_token)
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProvisionError("Invalid response") from exc
    if not isinstance(payload, list):
        _LOGGER.debug("Tags endpoint %s returned %s instead of a list", url, type(payload).__name__)
        raise ProvisionError("Invalid response")

    tags = {tag.version: tag for tag in _parse_tags(payload)}
    ordered = sort_versions(tags)
    _LOGGER.debug("Found %s release tags at %s", len(ordered), url)
    return [tags[version] for version in ordered]


def _parse_tags(payload: Iterable[Any]) -> Iterable[ReleaseTag]:
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        if not isinstance(name, str):
            continue
        version = normalise_tag(name)
        if version is None:
            _LOGGER.debug("Skipping non-version tag %r", name)
            continue
        commit = entry.get("commit")
        sha = commit.get("sha") if isinstance(commit, dict) else None
        yield ReleaseTag(name=name, version=version, commit=sha if isinstance(sha, str) else None)
