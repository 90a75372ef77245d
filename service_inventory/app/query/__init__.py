from .index import InventoryIndex

__all__ = ["InventoryIndex"]
