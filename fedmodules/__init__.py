"""Amount-tiered coin collections, Lightning contracts, and mint and Lightning consensus modules over an in-memory store."""

__version__ = "0.1.0"

__all__ = [
    "amount",
    "tiered",
    "store",
    "contracts",
    "lightning_types",
    "lightning",
    "mint_types",
    "mint",
]