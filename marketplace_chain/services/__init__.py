from .supervisor import ConnectionSupervisor
from .transaction_service import TransactionService

__all__ = ["ConnectionSupervisor", "TransactionService"]
