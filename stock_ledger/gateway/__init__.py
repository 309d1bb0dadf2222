"""Persistence gateways: the storage contract and its implementations."""

from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.gateway.memory import InMemoryGateway
from stock_ledger.gateway.replicated import Divergence, ReplicatedGateway
from stock_ledger.gateway.sql import SqlAlchemyGateway

__all__ = [
    "Divergence",
    "InMemoryGateway",
    "PersistenceGateway",
    "ReplicatedGateway",
    "SqlAlchemyGateway",
]
