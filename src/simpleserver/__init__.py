"""Minimal HTTP file server with directory listings."""
from .resolver import Outcome, RequestResolver, ResolvedRequest
from .server import Server, ServerState

__all__ = ['Outcome', 'RequestResolver', 'ResolvedRequest', 'Server', 'ServerState']
