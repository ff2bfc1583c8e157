"""Error types shared by the controller and its collaborators."""

from __future__ import annotations


class PoolSniperError(Exception):
    """Base error."""


class CollaboratorError(PoolSniperError):
    """Transient failure of an RPC, quote or submission call. Retried within budget."""


class PreconditionError(PoolSniperError):
    """Missing account, market or other precondition. Fatal for one mint only."""


class UnsupportedQueryError(PoolSniperError):
    """The node rejected a filter query as unsupported (invalid params)."""
