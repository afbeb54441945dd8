from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional


BlockCallback = Callable[[int], Awaitable[None]]


class BlockSubscription(ABC):
    """Handle for one new-block subscription"""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivering blocks. Calling it more than once is a no-op"""
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class ChainStateProvider(ABC):
    """Read-only view of the chain the bundles target"""

    name: str = "chain"
    timeout_s: int = 30

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain head"""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block_tag: str = "latest") -> int:
        """Account nonce at ``block_tag``"""
        pass

    @abstractmethod
    async def get_block(self, block_number: int) -> Optional[Dict[str, Any]]:
        """Block header with ``transactions`` as a list of hashes, None if unknown"""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt for a mined transaction, None if not mined"""
        pass

    @abstractmethod
    async def get_raw_transaction(self, tx_hash: str) -> Optional[str]:
        """Raw signed bytes (hex) of a known transaction"""
        pass

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Gas estimate for an unsigned transaction"""
        pass

    @abstractmethod
    def subscribe_blocks(self, callback: BlockCallback) -> BlockSubscription:
        """Deliver every new block number to ``callback`` until cancelled"""
        pass


class TransactionSigner(ABC):
    """Signing capability attached to an unsigned bundle item"""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Gas estimate for ``tx`` sent from this signer"""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Fully populated tx dict in, 0x-prefixed raw signed transaction out"""
        pass
