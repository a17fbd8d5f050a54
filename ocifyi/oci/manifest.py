from contextlib import contextmanager
from hashlib import sha256
from typing import Iterator

from pydantic import BaseModel, ValidationError

from ocifyi.exceptions import DecodeError
from ocifyi.oci.client import Client
from ocifyi.oci.reference import ImageReference


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    digest: str
    size: int
    mediaType: str
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    artifactType: str | None = None


class Layer(Descriptor):
    @contextmanager
    def open(self, ref: ImageReference, client: Client) -> Iterator[Iterator[bytes]]:
        """Stream the layer content from the repository of `ref`"""
        with client.open_blob(name=ref.name, digest=self.digest) as chunks:
            yield chunks


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    config: Descriptor | None = None
    artifactType: str | None = None
    layers: list[Layer] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    mediaType: str = "application/vnd.oci.image.manifest.v1+json"
    schemaVersion: int = 2

    @classmethod
    def from_bytes(cls, data: bytes) -> tuple["Manifest", str]:
        """Parse a raw manifest, returning it together with its digest"""
        digest = f"sha256:{sha256(data).hexdigest()}"
        try:
            return cls.model_validate_json(data), digest
        except ValidationError as e:
            raise DecodeError(f"error decoding manifest {digest}: {e}") from e

    @classmethod
    def pull(cls, ref: ImageReference, client: Client) -> tuple["Manifest", str]:
        return cls.from_bytes(client.pull_manifest(name=ref.name, reference=ref.reference))
