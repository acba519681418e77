from .base import ActionKind, ActionSubmitter, LedgerReader, MetadataFetcher, MutatingAction
from .evm import Web3LedgerReader, connect_ledger_reader
from .metadata import HttpMetadataFetcher, normalize_ipfs_uri, resolve_metadata

__all__ = [
    "ActionKind",
    "ActionSubmitter",
    "HttpMetadataFetcher",
    "LedgerReader",
    "MetadataFetcher",
    "MutatingAction",
    "Web3LedgerReader",
    "connect_ledger_reader",
    "normalize_ipfs_uri",
    "resolve_metadata",
]
