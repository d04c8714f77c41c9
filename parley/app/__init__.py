"""Composition root for Parley."""

from .dependencies import build_orchestrator, build_registry, build_transport

__all__ = ["build_orchestrator", "build_registry", "build_transport"]
