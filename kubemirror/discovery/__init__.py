"""Discovery and resource resolution."""

from kubemirror.discovery.resolver import ResolvedResource, build_selectors, discover, expand, resolve

__all__ = ["ResolvedResource", "build_selectors", "discover", "expand", "resolve"]
