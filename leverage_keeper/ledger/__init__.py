"""Execution ledger adapters."""
from .jsonrpc import JsonRpcLedger
from .simulated import SimulatedLedger

__all__ = ["JsonRpcLedger", "SimulatedLedger"]
