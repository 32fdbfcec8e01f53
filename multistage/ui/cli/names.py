"""
CLI commands for credential resource names.

Thin wrappers over ``multistage.core.services.k8s_naming``: print the
volume or SecretProviderClass name a credential group gets, without
compiling a whole test.
"""

from __future__ import annotations

import json

import click


@click.group("names")
def names() -> None:
    """Names — credential volume and SecretProviderClass names."""


@names.command("volume")
@click.argument("namespace")
@click.argument("collection")
@click.argument("mount_path")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def volume(namespace: str, collection: str, mount_path: str, as_json: bool) -> None:
    """Show the CSI volume name for COLLECTION mounted at MOUNT_PATH."""
    from multistage.core.services.k8s_naming import csi_volume_name

    name = csi_volume_name(namespace, collection, mount_path)

    if as_json:
        click.echo(json.dumps({
            "namespace": namespace,
            "collection": collection,
            "mount_path": mount_path,
            "name": name,
        }, indent=2))
        return

    click.echo(name)


@names.command("spc")
@click.argument("namespace")
@click.argument("collection")
@click.argument("mount_path")
@click.argument("credentials", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def spc(
    namespace: str,
    collection: str,
    mount_path: str,
    credentials: tuple[str, ...],
    as_json: bool,
) -> None:
    """Show the SecretProviderClass name for a credential group."""
    from multistage.core.models.step import CredentialReference
    from multistage.core.services.k8s_naming import spc_name

    refs = [
        CredentialReference(name=c, collection=collection, mount_path=mount_path)
        for c in credentials
    ]
    name = spc_name(namespace, collection, mount_path, refs)

    if as_json:
        click.echo(json.dumps({
            "namespace": namespace,
            "collection": collection,
            "mount_path": mount_path,
            "credentials": sorted(credentials),
            "name": name,
        }, indent=2))
        return

    click.echo(name)
