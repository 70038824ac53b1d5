"""Core domain logic: the transfer validator, its collaborators and the ledger they run on."""

from .errors import ContractRevert
from .ledger import Ledger
from .oft import Endpoint, OFTToken
from .registry import Permit2
from .types import BridgeOutcome, PermitSingle, PermitTransferFrom, TransferOutcome
from .validator import Permit2TransferValidator

__all__ = [
    "BridgeOutcome",
    "ContractRevert",
    "Endpoint",
    "Ledger",
    "OFTToken",
    "Permit2",
    "Permit2TransferValidator",
    "PermitSingle",
    "PermitTransferFrom",
    "TransferOutcome",
]
