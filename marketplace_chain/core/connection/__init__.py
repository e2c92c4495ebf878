from .manager import Connection, ConnectionManager

__all__ = ["Connection", "ConnectionManager"]
