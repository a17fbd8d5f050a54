from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ocifyi.exceptions import DecodeError


class RekorPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    body: str | None = None
    integratedTime: int
    logIndex: int = Field(ge=0)
    logID: str | None = None


class TransparencyBundle(BaseModel):
    """Rekor bundle as attached by cosign in the `dev.sigstore.cosign/bundle` annotation

    ref: https://github.com/sigstore/cosign/blob/main/pkg/cosign/bundle/rekor.go
    """

    model_config = ConfigDict(frozen=True)

    SignedEntryTimestamp: str | None = None
    Payload: RekorPayload | None = None

    @property
    def integrated_time(self) -> int | None:
        """Seconds since epoch the entry was integrated in the log"""
        return self.Payload.integratedTime if self.Payload is not None else None

    @property
    def log_index(self) -> int | None:
        return self.Payload.logIndex if self.Payload is not None else None


def decode_bundle(data: str | bytes) -> TransparencyBundle:
    try:
        return TransparencyBundle.model_validate_json(data)
    except ValidationError as e:
        raise DecodeError(f"error decoding bundle: {e}") from e
