"""kubemirror: in-memory mirror of selected Kubernetes objects."""

__version__ = "0.2.0"
