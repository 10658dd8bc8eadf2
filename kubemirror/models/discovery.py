"""Discovery catalog data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Scope(StrEnum):
    """Resource scope as reported by discovery."""

    NAMESPACED = "namespaced"
    CLUSTER = "cluster"


@dataclass(frozen=True)
class ApiResourceDescriptor:
    """A concrete resource type served by the cluster."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool
    singular: str = ""
    verbs: tuple[str, ...] = ()
    short_names: tuple[str, ...] = ()

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def is_subresource(self) -> bool:
        return "/" in self.plural


@dataclass(frozen=True)
class Capabilities:
    """What a resource type supports, derived from its descriptor."""

    scope: Scope
    verbs: tuple[str, ...] = ()
    subresources: tuple[str, ...] = ()

    def supports(self, *verbs: str) -> bool:
        return all(v in self.verbs for v in verbs)

    @property
    def watchable(self) -> bool:
        return self.supports("list", "watch")


@dataclass
class ApiGroup:
    """An API group with its served versions and their resources."""

    name: str
    preferred_version: str
    versions: list[str] = field(default_factory=list)
    resources: dict[str, list[ApiResourceDescriptor]] = field(default_factory=dict)

    def preferred_resources(self) -> list[ApiResourceDescriptor]:
        return self.resources.get(self.preferred_version, [])


@dataclass
class DiscoveryCatalog:
    """Every group/version/resource currently served by the cluster."""

    groups: list[ApiGroup] = field(default_factory=list)

    def group(self, name: str) -> ApiGroup | None:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def plural_for(self, api_version: str, kind: str) -> str | None:
        """Return the plural resource name serving ``kind`` at ``api_version``."""
        group_name, _, version = api_version.rpartition("/")
        group = self.group(group_name)
        if group is None:
            return None
        for descriptor in group.resources.get(version, []):
            if descriptor.kind == kind and not descriptor.is_subresource:
                return descriptor.plural
        return None

    def capabilities(self, descriptor: ApiResourceDescriptor) -> Capabilities:
        """Derive capabilities, including subresources listed alongside the resource."""
        group = self.group(descriptor.group)
        subresources: list[str] = []
        if group is not None:
            prefix = f"{descriptor.plural}/"
            for other in group.resources.get(descriptor.version, []):
                if other.plural.startswith(prefix):
                    subresources.append(other.plural[len(prefix) :])
        return Capabilities(
            scope=Scope.NAMESPACED if descriptor.namespaced else Scope.CLUSTER,
            verbs=descriptor.verbs,
            subresources=tuple(subresources),
        )

    @property
    def resource_count(self) -> int:
        return sum(len(rs) for g in self.groups for rs in g.resources.values())
