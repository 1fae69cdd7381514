"""Typed Kubernetes resource models and document conversion.

Submodules:
    meta     -- ObjectMeta, Resource base model, UnstructuredResource.
    gateway  -- Gateway API models (gateway.networking.k8s.io).
    core     -- Core v1 models (Service).
    convert  -- Converter: document <-> typed object mapping, ConversionError.
"""
