"""KubePolicy command-line interface.

    kubepolicy run                                  run the controller in-cluster
    kubepolicy topology MANIFEST... [--dot]         print the topology of YAML manifests
    kubepolicy effective MANIFEST... --kind KIND    print effective policies per path
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator
from typing import Any

import click
import yaml

from kubepolicy import __version__
from kubepolicy.apis.convert import ConversionError, Converter, group_kind_of
from kubepolicy.apis.gateway import BACKEND_TLS_POLICY
from kubepolicy.cache.store import Store
from kubepolicy.collector.source import document_identity
from kubepolicy.graph import Topology
from kubepolicy.machinery.builder import gateway_api_topology_builder
from kubepolicy.machinery.merge import STRATEGIES, effective_policy_for_path, strategy_by_name
from kubepolicy.machinery.objects import GroupKind
from kubepolicy.machinery.policies import PolicyKind
from kubepolicy.observability.logging import get_logger, setup_logging

_logger = get_logger("cli")


def _documents(paths: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Every document in *paths*, with ``kind: List`` flattened."""
    for path in paths:
        with open(path, encoding="utf-8") as fh:
            try:
                docs = list(yaml.safe_load_all(fh))
            except yaml.YAMLError as exc:
                raise click.ClickException(f"{path}: invalid YAML: {exc}") from exc
        for doc in docs:
            if not isinstance(doc, dict):
                continue
            if doc.get("kind") == "List":
                yield from (item for item in doc.get("items") or [] if isinstance(item, dict))
            else:
                yield doc


def parse_policy_kind(value: str) -> PolicyKind:
    """``Kind.group[=strategy]`` -> PolicyKind."""
    spec, _, strategy = value.partition("=")
    try:
        policy_kind = PolicyKind(GroupKind.parse(spec.strip()), strategy_by_name(strategy.strip() or "atomic"))
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    if strategy.strip() and policy_kind.group_kind == BACKEND_TLS_POLICY:
        raise click.BadParameter(f"{BACKEND_TLS_POLICY} always merges atomically; drop the strategy")
    return policy_kind


def load_store(paths: Iterable[str], converter: Converter) -> Store:
    """Convert every manifest document into a fresh Store.  Unconvertible documents are skipped."""
    store = Store()
    for doc in _documents(paths):
        try:
            kind = group_kind_of(doc)
            obj = converter.from_document(doc)
        except ConversionError as exc:
            _logger.warning("manifest_skipped", kind=exc.kind, name=exc.name, reason=exc.reason)
            continue
        store.upsert(kind, document_identity(doc), obj)
    return store


def build_topology(paths: Iterable[str], policy_kinds: Iterable[PolicyKind]) -> Topology:
    generic = [pk for pk in policy_kinds if pk.group_kind != BACKEND_TLS_POLICY]
    converter = Converter(generic)
    builder = gateway_api_topology_builder(policy_kinds=[BACKEND_TLS_POLICY, *(pk.group_kind for pk in generic)])
    return builder.build(load_store(paths, converter))


@click.group()
@click.version_option(__version__, prog_name="kubepolicy")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="warning",
    show_default=True,
    help="Log level for CLI commands.",
)
def cli(log_level: str) -> None:
    """Gateway API policy topology and effective policies."""
    setup_logging(log_level, json=False)


@cli.command()
def run() -> None:
    """Run the controller (configuration from KUBEPOLICY_* environment variables)."""
    from kubepolicy.app import main

    asyncio.run(main())


_manifests = click.argument("manifests", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))


@cli.command()
@_manifests
@click.option("--dot", is_flag=True, help="Render the topology in Graphviz DOT format.")
@click.option(
    "--policy-kind",
    "policy_kinds",
    multiple=True,
    help=f"Generic policy kind as Kind.group[=strategy]; strategies: {', '.join(STRATEGIES)}.",
)
def topology(manifests: tuple[str, ...], dot: bool, policy_kinds: tuple[str, ...]) -> None:
    """Print every root-to-leaf path of the topology built from MANIFESTS."""
    topo = build_topology(manifests, [parse_policy_kind(v) for v in policy_kinds])
    if dot:
        click.echo(topo.to_dot(), nl=False)
        return
    for path in topo.paths():
        click.echo(" -> ".join(node.locator for node in path))


@cli.command()
@_manifests
@click.option("--kind", "kind_", required=True, help="Policy kind as Kind.group.")
@click.option(
    "--strategy",
    type=click.Choice(sorted(STRATEGIES)),
    default=None,
    help="Merge strategy of a generic policy kind [default: atomic].",
)
def effective(manifests: tuple[str, ...], kind_: str, strategy: str | None) -> None:
    """Print the effective policy of one kind for every path that has one, as YAML."""
    policy_kind = parse_policy_kind(f"{kind_}={strategy}" if strategy else kind_)
    topo = build_topology(manifests, [policy_kind])
    results = []
    for path in topo.paths():
        policy = effective_policy_for_path(path, policy_kind.group_kind)
        if policy is None:
            continue
        results.append(
            {
                "path": [node.locator for node in path],
                "rules": {
                    name: {"spec": rule.spec, "source": rule.source} for name, rule in sorted(policy.rules().items())
                },
            }
        )
    click.echo(yaml.safe_dump(results, sort_keys=False), nl=False)
