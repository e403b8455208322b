# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for Midday DevNet.
"""
import asyncio
import json
import os

import click
import yaml

from ..errors import DevnetError
from ..MANAGERS.cluster import Cluster, cluster_containers, purge_cluster
from ..MANAGERS.container_runtime import ContainerRuntime
from ..MANAGERS.log_aggregator import LogAggregator
from ..MODELS.cluster_spec import ClusterSpec, check_name
from ..PARSERS.config_parser import ConfigParser
from ..UTILS.logging_setup import configure_logging
from ..UTILS.port_finder import is_port_free


@click.group()
@click.option('--file', '-f', default='devnet.yml', help='Devnet config file path')
@click.option('--name', '-n', default=None, help='Override the cluster name')
@click.option('--verbose', '-v', is_flag=True, help='Log debug output')
@click.pass_context
def cli(ctx, file, name, verbose):
    """
    Midday DevNet - local node, indexer and proof server in Docker.

    Without a config file the built-in defaults are used.
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['name'] = name


def _load_spec(ctx) -> ClusterSpec:
    if 'spec' not in ctx.obj:
        parser = ConfigParser()
        name = ctx.obj.get('name')
        if name:
            try:
                check_name(name)
            except ValueError as e:
                raise click.BadParameter(str(e), param_hint='--name')
            parser.context['DEVNET_CLUSTER_NAME'] = name
        file = ctx.obj['file']
        try:
            if os.path.exists(file):
                spec = parser.parse(file)
            else:
                spec = parser.load_devnet_config().to_cluster_spec()
        except DevnetError as e:
            raise click.ClickException(str(e))
        if name and spec.name != name:
            spec = spec.model_copy(update={'name': name})
        ctx.obj['spec'] = spec
    return ctx.obj['spec']


def _run(coro):
    try:
        return asyncio.run(coro)
    except DevnetError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.option('--detach', '-d', is_flag=True, help='Leave the cluster running and exit')
@click.pass_context
def up(ctx, detach):
    """Start the devnet and print its endpoints."""
    spec = _load_spec(ctx)
    for svc in spec.services:
        for host_port in svc.ports.values():
            if host_port is not None and not is_port_free(host_port):
                click.echo(f"Warning: port {host_port} for {svc.name} is already in use", err=True)

    async def _up():
        cluster = Cluster.make(spec)
        config = await cluster.start()
        click.echo(json.dumps(config.to_dict(), indent=2))
        if detach:
            return
        click.echo("Running... Press Ctrl+C to stop.")
        try:
            await asyncio.Event().wait()
        finally:
            click.echo("\nStopping cluster...")
            await cluster.remove()

    try:
        _run(_up())
    except KeyboardInterrupt:
        click.echo("Cluster removed.")


@cli.command()
@click.pass_context
def down(ctx):
    """Remove all containers and the network of the cluster."""
    spec = _load_spec(ctx)
    removed = _run(purge_cluster(spec.name, ContainerRuntime()))
    for name in removed:
        click.echo(f"Removed {name}")
    click.echo(f"Cluster {spec.name} removed.")


@cli.command()
@click.pass_context
def ps(ctx):
    """List container status"""
    spec = _load_spec(ctx)
    statuses = _run(cluster_containers(spec.name, ContainerRuntime()))
    click.echo(f"{'CONTAINER':30} {'STATUS':10} {'HEALTH':10}")
    click.echo("-" * 52)
    for status in statuses:
        click.echo(f"{status.name:30} {status.status:10} {status.health or '-':10}")


@cli.command()
@click.option('--no-follow', is_flag=True, help='Print current logs and exit')
@click.argument('services', nargs=-1)
@click.pass_context
def logs(ctx, no_follow, services):
    """Tail logs"""
    spec = _load_spec(ctx)
    if not services:
        services = [svc.name for svc in spec.services]

    aggregator = LogAggregator(ContainerRuntime(), spec.name, sink=click.echo)
    try:
        _run(aggregator.tail_logs(list(services), follow=not no_follow))
    except KeyboardInterrupt:
        click.echo("\nStopping log tailing...")


@cli.command()
@click.pass_context
def config(ctx):
    """Print the resolved cluster definition."""
    spec = _load_spec(ctx)
    click.echo(yaml.safe_dump(spec.model_dump(mode='json'), sort_keys=False))


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
