from .nonce_manager import NonceManager, NonceState, is_nonce_conflict

__all__ = ["NonceManager", "NonceState", "is_nonce_conflict"]
