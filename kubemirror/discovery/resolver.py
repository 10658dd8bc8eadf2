"""Resource resolver: configured resource names -> watch selectors.

Resolution happens once at startup against the live discovery catalog.
A configured name matches a resource when it equals (case-insensitively) its
plural, singular, kind or one of its short names. Only each group's preferred
version is considered, so a kind served as both v1 and v1beta1 resolves once.
"""

from __future__ import annotations

from dataclasses import dataclass

from kubemirror.cluster.client import ClusterClient
from kubemirror.models.config import ResourceSpec
from kubemirror.models.discovery import (
    ApiResourceDescriptor,
    Capabilities,
    DiscoveryCatalog,
    Scope,
)
from kubemirror.models.objects import ResourceSelector
from kubemirror.observability.logging import get_logger

_logger = get_logger("resolver")


@dataclass(frozen=True)
class ResolvedResource:
    """A resource spec matched to a concrete served resource type."""

    descriptor: ApiResourceDescriptor
    capabilities: Capabilities
    spec: ResourceSpec


async def discover(client: ClusterClient) -> DiscoveryCatalog:
    """Fetch the discovery catalog from the cluster."""
    return await client.discover()


def _names(descriptor: ApiResourceDescriptor) -> set[str]:
    names = {descriptor.plural.lower(), descriptor.kind.lower()}
    if descriptor.singular:
        names.add(descriptor.singular.lower())
    names.update(s.lower() for s in descriptor.short_names)
    return names


def resolve(catalog: DiscoveryCatalog, specs: list[ResourceSpec]) -> list[ResolvedResource]:
    """Match each spec against the catalog.

    One spec can match in several groups (``events`` is served by both the
    core group and events.k8s.io); each match yields its own result unless
    the spec's ``api_groups`` restricts it.
    """
    resolved: list[ResolvedResource] = []
    for spec in specs:
        wanted = spec.name.lower()
        allowed_groups = set(spec.api_groups) if spec.api_groups is not None else None
        matches = 0

        for group in catalog.groups:
            if allowed_groups is not None and group.name not in allowed_groups:
                continue
            for descriptor in group.preferred_resources():
                if descriptor.is_subresource or wanted not in _names(descriptor):
                    continue
                capabilities = catalog.capabilities(descriptor)
                if not capabilities.watchable:
                    _logger.warning(
                        "resource_not_watchable",
                        resource=spec.name,
                        api_version=descriptor.api_version,
                        verbs=list(descriptor.verbs),
                    )
                    continue
                resolved.append(ResolvedResource(descriptor, capabilities, spec))
                matches += 1

        if matches == 0:
            _logger.warning(
                "resource_not_found",
                resource=spec.name,
                api_groups=spec.api_groups,
            )
        else:
            _logger.debug("resource_resolved", resource=spec.name, matches=matches)
    return resolved


def expand(
    descriptor: ApiResourceDescriptor,
    capabilities: Capabilities,
    spec: ResourceSpec,
) -> list[ResourceSelector]:
    """Turn one resolved resource into watch selectors.

    Namespaced kinds get one selector per configured namespace, or a single
    all-namespaces selector when none are configured. Cluster-scoped kinds
    always get exactly one selector.
    """

    def _selector(namespace: str | None) -> ResourceSelector:
        return ResourceSelector(
            group=descriptor.group,
            version=descriptor.version,
            kind=descriptor.kind,
            plural=descriptor.plural,
            event_type=spec.event_type,
            namespace=namespace,
            label_selectors=tuple(spec.label_selectors),
            field_selectors=tuple(spec.field_selectors),
        )

    if capabilities.scope == Scope.CLUSTER:
        if spec.namespaces:
            _logger.warning(
                "namespaces_ignored_for_cluster_scope",
                resource=spec.name,
                kind=descriptor.kind,
                namespaces=spec.namespaces,
            )
        return [_selector(None)]

    if not spec.namespaces:
        return [_selector(None)]
    # dict.fromkeys keeps order and drops duplicate namespaces
    return [_selector(ns) for ns in dict.fromkeys(spec.namespaces)]


def build_selectors(catalog: DiscoveryCatalog, specs: list[ResourceSpec]) -> list[ResourceSelector]:
    """Resolve ``specs`` and expand every match into selectors."""
    selectors: list[ResourceSelector] = []
    seen: set[str] = set()
    for item in resolve(catalog, specs):
        for selector in expand(item.descriptor, item.capabilities, item.spec):
            if selector.key in seen:
                _logger.warning("duplicate_selector_skipped", selector=selector.key, event_type=selector.event_type)
                continue
            seen.add(selector.key)
            selectors.append(selector)
    _logger.info("selectors_built", count=len(selectors))
    return selectors
