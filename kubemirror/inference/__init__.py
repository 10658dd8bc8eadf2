"""Type metadata inference from REST paths."""

from kubemirror.inference.worker import TypeInferenceWorker, infer_type_meta

__all__ = ["TypeInferenceWorker", "infer_type_meta"]
