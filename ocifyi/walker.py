"""Walk cosign signature and attestation manifests

Cosign stores signatures and attestations of an image as separate
manifests in the same repository, tagged after the digest of the image:
`sha256-<hex>.sig` and `sha256-<hex>.att`. Every layer of such a manifest
is one signature or attestation, with its signing metadata in the layer
annotations.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

from cryptography import x509

from ocifyi.exceptions import DecodeError, NotFound, OciFyiError, ParseError, WalkError
from ocifyi.oci.client import Client
from ocifyi.oci.manifest import Layer, Manifest
from ocifyi.oci.reference import ImageReference, companion_tag, parse_repository
from ocifyi.sigstore.bundle import TransparencyBundle, decode_bundle
from ocifyi.sigstore.certificate import unpack_certificate
from ocifyi.sigstore.extensions import ProvenanceExtensions
from ocifyi.sigstore.statement import DSSE_MEDIA_TYPE, fetch_statement_header

logger = logging.getLogger(__name__)

BUNDLE_ANNOTATION = "dev.sigstore.cosign/bundle"
CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
PREDICATE_TYPE_ANNOTATION = "predicateType"


class Kind(Enum):
    SIGNATURES = "sig"
    ATTESTATIONS = "att"

    @property
    def title(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True, slots=True)
class LayerRecord:
    """Signing metadata of a single signature or attestation layer"""

    layer: ImageReference
    layer_type: str
    bundle: TransparencyBundle | None = None
    certificate: x509.Certificate | None = None
    extensions: ProvenanceExtensions = field(default_factory=ProvenanceExtensions)
    predicate_type: str = ""


@dataclass(frozen=True, slots=True)
class WalkResult:
    digest: ImageReference
    records: list[LayerRecord] = field(default_factory=list)


def assemble_layer(ref: ImageReference, layer: Layer, client: Client) -> LayerRecord:
    """Decode the signing metadata of `layer`

    A malformed layer digest, bundle or DSSE envelope raises DecodeError,
    a malformed certificate only leaves the certificate fields empty.
    """
    try:
        layer_ref = ref.with_digest(layer.digest)
    except ValueError as e:
        raise DecodeError(f"error reading layer descriptor: {e}") from e

    bundle = None
    cert = None
    extensions = ProvenanceExtensions()
    predicate_type = ""
    for key, value in (layer.annotations or {}).items():
        if key == BUNDLE_ANNOTATION:
            bundle = decode_bundle(value)
        elif key == CERTIFICATE_ANNOTATION:
            try:
                cert, extensions = unpack_certificate(value)
            except ParseError as e:
                logger.warning("Ignoring certificate of %s: %s", layer.digest, e)
        elif key == PREDICATE_TYPE_ANNOTATION:
            predicate_type = value

    if layer.mediaType == DSSE_MEDIA_TYPE:
        header = fetch_statement_header(ref=ref, layer=layer, client=client)
        if header is not None:
            predicate_type = header.predicateType

    return LayerRecord(
        layer=layer_ref,
        layer_type=layer.mediaType,
        bundle=bundle,
        certificate=cert,
        extensions=extensions,
        predicate_type=predicate_type,
    )


def companion_reference(
    ref: ImageReference,
    kind: Kind,
    client: Client,
    repository: str | None = None,
) -> ImageReference:
    """Return the reference of the `kind` manifest cosign attaches to `ref`

    `repository` is a full repository name like `ghcr.io/org/sigs` that holds
    the companion instead of the repository of `ref`, like cosign's
    COSIGN_REPOSITORY.
    """
    digest = ref.digest
    if digest is None:
        try:
            digest = client.head_manifest(name=ref.name, reference=ref.reference)
        except NotFound:
            raise
        except OciFyiError as e:
            raise WalkError("digest", f"error resolving {ref}: {e}") from e
    try:
        target = ref
        if repository is not None:
            registry, name = parse_repository(repository)
            target = ImageReference(registry=registry, repository=name)
        return target.with_tag(companion_tag(digest, kind.value))
    except ValueError as e:
        raise WalkError("companion", f"error getting {kind.value} tag: {e}") from e


def companion_registry(ref: ImageReference, repository: str | None) -> str | None:
    """Return the registry of `repository` when it is not the registry of `ref`

    Invalid repository names return None, `walk` reports them.
    """
    if repository is None:
        return None
    try:
        registry, _ = parse_repository(repository)
    except ValueError:
        return None
    return registry if registry != ref.registry else None


def walk(
    ref: ImageReference,
    kind: Kind,
    client: Client,
    repository: str | None = None,
    companion_client: Client | None = None,
) -> WalkResult:
    """Collect the LayerRecords of the `kind` manifest of `ref`

    `companion_client` reads the companion manifest when `repository` lives
    on another registry than `ref`.
    Raises NotFound if the image or its companion manifest does not exist.
    """
    companion = companion_reference(ref, kind, client, repository=repository)
    if companion_client is None:
        if companion.registry != ref.registry:
            raise WalkError("companion", f"no client for registry {companion.registry}")
        companion_client = client
    logger.debug("Pulling %s manifest %s", kind.value, companion)
    try:
        manifest, digest = Manifest.pull(companion, companion_client)
    except NotFound:
        raise
    except OciFyiError as e:
        raise WalkError("manifest", f"error getting {companion}: {e}") from e

    records = []
    for index, layer in enumerate(manifest.layers):
        try:
            records.append(assemble_layer(companion, layer, companion_client))
        except OciFyiError as e:
            raise WalkError("layer", f"{layer.digest}: {e}", layer_index=index) from e
    return WalkResult(digest=companion.with_digest(digest), records=records)


def get_signatures(ref: ImageReference, client: Client, **kwargs) -> WalkResult:
    return walk(ref, Kind.SIGNATURES, client, **kwargs)


def get_attestations(ref: ImageReference, client: Client, **kwargs) -> WalkResult:
    return walk(ref, Kind.ATTESTATIONS, client, **kwargs)
