from .manager import Pairing, PairingManager, PairingResult, generate_token, hash_token

__all__ = ["Pairing", "PairingManager", "PairingResult", "generate_token", "hash_token"]
