from .store_node import StoreNode

__all__ = [
    "StoreNode",
]
