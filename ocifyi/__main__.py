import logging
from contextlib import ExitStack

import click
import uvicorn

import ocifyi
from ocifyi.exceptions import OciFyiError
from ocifyi.render import Summary, build_config_url, subject_alt_name, summarize, unix
from ocifyi.walker import Kind, companion_registry


@click.group()
def cli():
    pass


class OCI:
    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        debug: bool = False,
    ):
        if debug:
            logging.basicConfig(level=logging.DEBUG)
        self.username = username
        self.password = password
        self.scheme = "http" if insecure else "https"

    def client(self, registry: str, credentials: bool = True) -> ocifyi.oci.Client:
        if not credentials:
            return ocifyi.oci.Client(registry_url=f"{self.scheme}://{registry}")
        return ocifyi.oci.Client(
            registry_url=f"{self.scheme}://{registry}",
            username=self.username,
            password=self.password,
        )


@cli.group()
@click.option("-u", "--username", help="Username", default=None, envvar="OCIFYI_USERNAME")
@click.option("-p", "--password", help="Password", default=None, envvar="OCIFYI_PASSWORD")
@click.option("--insecure", help="Use plain HTTP", is_flag=True)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.pass_context
def oci(ctx, username, password, insecure, debug):
    ctx.obj = OCI(username=username, password=password, insecure=insecure, debug=debug)


def print_summary(summary: Summary, kinds: set[Kind]):
    print(f"{summary.ref}")
    print(f"Resolved: {summary.resolved}")
    for section in summary.sections:
        if section.kind not in kinds:
            continue
        print()
        print(f"{section.name}: {section.digest or section.error or 'none'}")
        for record in section.records:
            print(f"  - {record.layer.digest} ({record.layer_type})")
            if record.predicate_type:
                print(f"    predicate type: {record.predicate_type}")
            if record.bundle is not None and record.bundle.Payload is not None:
                print(f"    log index: {record.bundle.log_index}")
                print(f"    integrated time: {unix(record.bundle.integrated_time)}")
            if identity := subject_alt_name(record.certificate):
                print(f"    identity: {identity}")
            ext = record.extensions
            if ext.issuer:
                print(f"    issuer: {ext.issuer}")
            if ext.source_repository_uri:
                print(f"    source: {ext.source_repository_uri} {ext.source_repository_ref}")
            if ext.build_config_uri:
                print(f"    build config: {build_config_url(ext)}")


@oci.command()
@click.argument("image")
@click.option(
    "--kind",
    type=click.Choice(["all", "signatures", "attestations"]),
    default="all",
    help="Which companion manifests to show",
)
@click.option(
    "--repository",
    envvar="COSIGN_REPOSITORY",
    default=None,
    help="Repository holding the signatures",
)
@click.pass_context
def inspect(ctx, image: str, kind: str, repository: str | None):
    """Show the signatures and attestations of IMAGE."""
    obj: OCI = ctx.ensure_object(OCI)
    try:
        ref = ocifyi.ImageReference.parse(image)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="IMAGE")
    kinds = {Kind.SIGNATURES, Kind.ATTESTATIONS}
    if kind != "all":
        kinds = {Kind[kind.upper()]}
    if repository is not None:
        try:
            ocifyi.oci.parse_repository(repository)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--repository")
    with ExitStack() as stack:
        client = stack.enter_context(obj.client(ref.registry))
        companion_client = None
        if registry := companion_registry(ref, repository):
            # Credentials are only sent to the registry of the image
            companion_client = stack.enter_context(obj.client(registry, credentials=False))
        try:
            summary = summarize(
                ref,
                client=client,
                repository=repository,
                companion_client=companion_client,
            )
        except OciFyiError as e:
            raise click.ClickException(str(e))
    print_summary(summary, kinds)


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(message)s",
            "use_colors": None,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',  # noqa: E501
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        "ocifyi": {"handlers": ["default"], "level": "INFO", "propagate": False},
    },
}


@cli.command()
@click.option("--reload", help="Watch for changes", is_flag=True)
@click.option("-p", "--port", type=int, default=8080)
def server(reload: bool = False, port: int = 8080):
    uvicorn.run(
        "ocifyi.server:app",
        port=port,
        log_level="info",
        log_config=LOGGING_CONFIG,
        reload=reload,
    )


if __name__ == "__main__":
    cli()
