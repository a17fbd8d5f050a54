import re
from dataclasses import dataclass, replace

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

REPOSITORY_PATTERN = re.compile(
    r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$"
)
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")


def _is_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_repository(value: str) -> tuple[str, str]:
    """Split a repository name like `ghcr.io/org/sigs` into registry and repository

    Names without a registry live on Docker Hub, under `library/` when
    they have a single component.
    """
    registry, _, repository = value.partition("/")
    if not repository or not _is_registry(registry):
        registry, repository = DEFAULT_REGISTRY, value
    if registry == "docker.io":
        registry = DEFAULT_REGISTRY
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"
    if not REPOSITORY_PATTERN.match(repository):
        raise ValueError(f"Invalid repository: {repository!r}")
    return registry, repository


@dataclass(frozen=True, slots=True)
class ImageReference:
    """A registry/repository/tag-or-digest triple

    ref: https://github.com/distribution/reference/blob/main/reference.go
    """

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    def __str__(self):
        if self.digest is not None:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return f"{self.registry}/{self.repository}:{self.tag}"

    @property
    def name(self) -> str:
        """The repository name as used in the /v2/<name>/ registry API"""
        return self.repository

    @property
    def reference(self) -> str:
        """The tag or digest as used in the /v2/<name>/manifests/<reference> API"""
        return self.digest if self.digest is not None else self.tag

    def with_tag(self, tag: str) -> "ImageReference":
        if not TAG_PATTERN.match(tag):
            raise ValueError(f"Invalid tag: {tag!r}")
        return replace(self, tag=tag, digest=None)

    def with_digest(self, digest: str) -> "ImageReference":
        if not DIGEST_PATTERN.match(digest):
            raise ValueError(f"Invalid digest: {digest!r}")
        return replace(self, tag=None, digest=digest)

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """Parse an image reference like `cgr.dev/chainguard/static:latest`

        Follows the docker conventions: images without a registry live on
        Docker Hub, single component Docker Hub images live under `library/`
        and references without tag or digest point to `latest`.
        """
        if not value or value != value.strip():
            raise ValueError(f"Invalid reference: {value!r}")
        remainder, _, digest = value.partition("@")
        if digest and not DIGEST_PATTERN.match(digest):
            raise ValueError(f"Invalid digest: {digest!r}")

        tag = None
        head, sep, last = remainder.rpartition("/")
        if ":" in last:
            last, tag = last.rsplit(":", 1)
            if not TAG_PATTERN.match(tag):
                raise ValueError(f"Invalid tag: {tag!r}")
        remainder = f"{head}{sep}{last}"

        registry, repository = parse_repository(remainder)
        if not digest and tag is None:
            tag = DEFAULT_TAG
        return cls(
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest or None,
        )


def companion_tag(digest: str, suffix: str) -> str:
    """Return the cosign tag for a companion artifact of `digest`

    `sha256:abc...` with suffix `sig` becomes `sha256-abc....sig`
    """
    if not DIGEST_PATTERN.match(digest):
        raise ValueError(f"Invalid digest: {digest!r}")
    return f"{digest.replace(':', '-')}.{suffix}"
