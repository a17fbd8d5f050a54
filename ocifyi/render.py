"""Summaries of the signing metadata of an image, and helpers to present them"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ocifyi.exceptions import NotFound, OciFyiError
from ocifyi.oci.client import Client
from ocifyi.oci.reference import ImageReference
from ocifyi.sigstore.certificate import subject_alt_name
from ocifyi.sigstore.extensions import GITHUB, build_config_url
from ocifyi.walker import Kind, LayerRecord, walk

logger = logging.getLogger(__name__)

ISSUER_ICONS = {
    "https://token.actions.githubusercontent.com": "https://github.githubassets.com/images/modules/logos_page/GitHub-Mark.png",
    "https://gitlab.com": "https://about.gitlab.com/images/press/press-kit-icon.svg",
    "https://accounts.google.com": "https://lh3.googleusercontent.com/COxitqgJr1sJnIDe8-jiKhxDx1FrYbtRHKJ9z_hELisAlapwE9LUPh6fcXIfb5vwpbMl4xl9H9TRFPc5NOO8Sb3VSgIBrfRYvW6cUA",
}

__all__ = [
    "Section",
    "Summary",
    "build_config_url",
    "issuer_icon",
    "sha_url",
    "subject_alt_name",
    "summarize",
    "unix",
]


def unix(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def sha_url(repo: str, sha: str) -> str:
    """Link to commit `sha` for GitHub repositories"""
    if repo.startswith(GITHUB):
        return f"{repo}/commit/{sha}"
    return repo


def issuer_icon(issuer: str) -> str:
    return ISSUER_ICONS.get(issuer, "")


@dataclass(frozen=True, slots=True)
class Section:
    """The signatures or attestations of an image

    `digest` is empty when the image has none,
    `error` is set when they could not be read.
    """

    kind: Kind
    digest: str = ""
    records: list[LayerRecord] = field(default_factory=list)
    error: str = ""

    @property
    def name(self) -> str:
        return self.kind.title


@dataclass(frozen=True, slots=True)
class Summary:
    ref: ImageReference
    resolved: ImageReference
    sections: list[Section]


def _section(
    ref: ImageReference,
    kind: Kind,
    client: Client,
    repository: str | None,
    companion_client: Client | None,
) -> Section:
    try:
        result = walk(
            ref, kind, client, repository=repository, companion_client=companion_client
        )
    except NotFound:
        logger.info("No %s found for %s", kind.name.lower(), ref)
        return Section(kind=kind)
    except OciFyiError as e:
        logger.warning("Error getting %s of %s: %s", kind.name.lower(), ref, e)
        return Section(kind=kind, error=str(e))
    return Section(kind=kind, digest=str(result.digest), records=result.records)


def summarize(
    ref: ImageReference,
    client: Client,
    repository: str | None = None,
    companion_client: Client | None = None,
) -> Summary:
    """Collect the signatures and attestations of `ref`

    Raises NotFound if the image itself does not exist.
    """
    digest = client.head_manifest(name=ref.name, reference=ref.reference)
    resolved = ref.with_digest(digest)
    return Summary(
        ref=ref,
        resolved=resolved,
        sections=[
            _section(resolved, kind, client, repository, companion_client)
            for kind in (Kind.SIGNATURES, Kind.ATTESTATIONS)
        ],
    )
