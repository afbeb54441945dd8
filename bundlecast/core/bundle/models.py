"""
Bundle lifecycle models and types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

if TYPE_CHECKING:
    from bundlecast.providers.base import TransactionSigner


def to_int(value: Any) -> int:
    """Parse wei/gas values that relays send as ints, decimal or hex strings."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise TypeError("Boolean is not a numeric quantity")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


# =============================================================================
# Bundle inputs
# =============================================================================


@dataclass(frozen=True)
class TransactionIntent:
    """A transaction to be signed as part of a bundle.

    Unset optional fields are filled in by the signer: nonce from the
    account's position in the bundle or chain, ``gas_limit`` by estimation,
    and a zero legacy gas price when no fee fields and no type are given.
    """
    to: Optional[str]
    value: int = 0
    data: str = "0x"
    nonce: Any = None
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    type: Optional[int] = None
    chain_id: Optional[int] = None

    @property
    def has_fee_fields(self) -> bool:
        return any(
            fee is not None
            for fee in (self.gas_price, self.max_fee_per_gas, self.max_priority_fee_per_gas)
        )

    def to_tx_dict(self) -> Dict[str, Any]:
        """Render as an eth-account transaction dict, omitting unset fields."""
        tx: Dict[str, Any] = {
            "value": self.value,
            "data": self.data,
        }
        if self.to is not None:
            tx["to"] = self.to
        optional = {
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "type": self.type,
            "chainId": self.chain_id,
        }
        tx.update({key: value for key, value in optional.items() if value is not None})
        return tx


@dataclass(frozen=True)
class RawItem:
    """A transaction that arrives already signed."""
    signed_transaction: str


@dataclass(frozen=True)
class UnsignedItem:
    """A transaction the bundle signer must sign with ``signer``."""
    transaction: TransactionIntent
    signer: "TransactionSigner"


BundleItem = Union[RawItem, UnsignedItem]


# =============================================================================
# Signed bundles
# =============================================================================


@dataclass(frozen=True)
class SignedBundleEntry:
    """One raw transaction of a bundle plus the fields recovered from it."""
    signed_transaction: str
    hash: str
    account: str
    nonce: int


@dataclass(frozen=True)
class SignedBundle:
    """Ordered, immutable bundle. Index order is execution order."""
    entries: Tuple[SignedBundleEntry, ...]

    @classmethod
    def from_raw(cls, raw_transactions: Iterable[str]) -> "SignedBundle":
        from .codec import decode_signed_transaction

        return cls(entries=tuple(decode_signed_transaction(raw) for raw in raw_transactions))

    @property
    def raw_transactions(self) -> List[str]:
        return [entry.signed_transaction for entry in self.entries]

    @property
    def hashes(self) -> List[str]:
        return [entry.hash for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[SignedBundleEntry]:
        return iter(self.entries)


class BundleOptions(BaseModel):
    """Optional eth_sendBundle parameters, validated once at the call boundary."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_timestamp: Optional[int] = Field(
        default=None, ge=0, description="Earliest block timestamp the bundle is valid for (inclusive)"
    )
    max_timestamp: Optional[int] = Field(
        default=None, ge=0, description="Latest block timestamp the bundle is valid for (inclusive)"
    )
    reverting_tx_hashes: List[str] = Field(
        default_factory=list, description="Hashes of transactions allowed to revert"
    )
    replacement_uuid: Optional[str] = Field(
        default=None, description="Key that lets eth_cancelBundle withdraw this submission"
    )

    @field_validator("reverting_tx_hashes")
    @classmethod
    def _check_hashes(cls, hashes: List[str]) -> List[str]:
        for tx_hash in hashes:
            body = tx_hash[2:] if tx_hash.startswith("0x") else ""
            if len(body) != 64:
                raise ValueError(f"Invalid transaction hash: {tx_hash}")
            int(body, 16)
        return [tx_hash.lower() for tx_hash in hashes]

    @model_validator(mode="after")
    def _check_window(self) -> "BundleOptions":
        if (
            self.min_timestamp is not None
            and self.max_timestamp is not None
            and self.max_timestamp < self.min_timestamp
        ):
            raise ValueError("max_timestamp must not be earlier than min_timestamp")
        return self

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.min_timestamp is not None:
            params["minTimestamp"] = self.min_timestamp
        if self.max_timestamp is not None:
            params["maxTimestamp"] = self.max_timestamp
        if self.reverting_tx_hashes:
            params["revertingTxHashes"] = list(self.reverting_tx_hashes)
        if self.replacement_uuid is not None:
            params["replacementUuid"] = self.replacement_uuid
        return params


# =============================================================================
# Relay responses
# =============================================================================


@dataclass(frozen=True)
class RelayError:
    """A well-formed request the relay rejected."""
    message: str
    code: Optional[int] = None

    @classmethod
    def from_rpc(cls, error: Any) -> "RelayError":
        if isinstance(error, dict):
            code = error.get("code")
            return cls(message=str(error.get("message", "")), code=int(code) if code is not None else None)
        return cls(message=str(error))


@dataclass(frozen=True)
class TransactionSimulation:
    """Per-transaction slice of an eth_callBundle result."""
    tx_hash: str
    gas_used: int
    gas_price: int = 0
    gas_fees: int = 0
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    coinbase_diff: int = 0
    eth_sent_to_coinbase: int = 0
    value: Optional[str] = None
    error: Optional[str] = None
    revert: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.revert is not None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "TransactionSimulation":
        return cls(
            tx_hash=data.get("txHash", ""),
            gas_used=to_int(data.get("gasUsed")),
            gas_price=to_int(data.get("gasPrice")),
            gas_fees=to_int(data.get("gasFees")),
            from_address=data.get("fromAddress"),
            to_address=data.get("toAddress"),
            coinbase_diff=to_int(data.get("coinbaseDiff")),
            eth_sent_to_coinbase=to_int(data.get("ethSentToCoinbase")),
            value=data.get("value"),
            error=data.get("error"),
            revert=data.get("revert"),
        )


@dataclass(frozen=True)
class SimulationSuccess:
    """Relay accepted the simulation request; individual txs may still revert."""
    bundle_hash: str
    bundle_gas_price: int
    coinbase_diff: int
    eth_sent_to_coinbase: int
    gas_fees: int
    state_block_number: int
    results: Tuple[TransactionSimulation, ...]

    @property
    def total_gas_used(self) -> int:
        return sum(result.gas_used for result in self.results)

    @property
    def first_revert(self) -> Optional[TransactionSimulation]:
        return next((result for result in self.results if result.failed), None)

    @property
    def first_revert_index(self) -> Optional[int]:
        for index, result in enumerate(self.results):
            if result.failed:
                return index
        return None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SimulationSuccess":
        return cls(
            bundle_hash=data.get("bundleHash", ""),
            bundle_gas_price=to_int(data.get("bundleGasPrice")),
            coinbase_diff=to_int(data.get("coinbaseDiff")),
            eth_sent_to_coinbase=to_int(data.get("ethSentToCoinbase")),
            gas_fees=to_int(data.get("gasFees")),
            state_block_number=to_int(data.get("stateBlockNumber")),
            results=tuple(TransactionSimulation.from_rpc(item) for item in data.get("results") or []),
        )


@dataclass(frozen=True)
class SimulationFailure:
    """The simulation could not run (relay error, nonce too low, ...)."""
    message: str
    code: Optional[int] = None
    first_revert_index: Optional[int] = None


SimulationResult = Union[SimulationSuccess, SimulationFailure]


# =============================================================================
# Resolutions
# =============================================================================


class InclusionResolution(str, Enum):
    """Terminal outcome of watching a bundle."""
    INCLUDED = "included"
    PASSED_WITHOUT_INCLUSION = "passed_without_inclusion"
    NONCE_INVALIDATED = "nonce_invalidated"


class PrivateTransactionResolution(str, Enum):
    """Terminal outcome of watching a private transaction."""
    INCLUDED = "included"
    EXPIRED = "expired"


class ConflictType(str, Enum):
    """Why a bundle did not land in its target block."""
    NO_CONFLICT = "no_conflict"
    NONCE_COLLISION = "nonce_collision"
    EXECUTION_ERROR = "execution_error"
    COINBASE_PAYMENT = "coinbase_payment"
    GAS_USED_MISMATCH = "gas_used_mismatch"
    NO_COMPETING_BUNDLES = "no_competing_bundles"


@dataclass(frozen=True)
class BundleGasPricing:
    """Aggregate economics of a bundle, all values in wei / gas units."""
    tx_count: int
    gas_used: int
    gas_fees_paid_by_searcher: int
    priority_fees_received_by_miner: int
    eth_sent_to_coinbase: int
    effective_gas_price_to_searcher: int
    effective_priority_fee_to_miner: int


@dataclass(frozen=True)
class ConflictRecord:
    """Result of conflict diagnosis for one bundle and target block."""
    conflict_type: ConflictType
    target_simulation: SimulationSuccess
    conflicting_entries: Tuple[Dict[str, Any], ...] = ()
    conflicting_bundle_index: Optional[int] = None
    target_bundle_gas_pricing: Optional[BundleGasPricing] = None
    conflicting_bundle_gas_pricing: Optional[BundleGasPricing] = None


# =============================================================================
# Submission handles
# =============================================================================


@dataclass(frozen=True)
class BundleSubmission:
    """Handle for one accepted eth_sendBundle call."""
    bundle_hash: str
    target_block_number: int
    entries: Tuple[SignedBundleEntry, ...]
    _wait: Callable[[Optional[float]], Awaitable[InclusionResolution]] = field(repr=False, compare=False)
    _simulate: Callable[[], Awaitable[SimulationResult]] = field(repr=False, compare=False)
    _receipts: Callable[[], Awaitable[List[Optional[Dict[str, Any]]]]] = field(repr=False, compare=False)

    async def wait(self, timeout_s: Optional[float] = None) -> InclusionResolution:
        return await self._wait(timeout_s)

    async def simulate(self) -> SimulationResult:
        return await self._simulate()

    async def receipts(self) -> List[Optional[Dict[str, Any]]]:
        return await self._receipts()


@dataclass(frozen=True)
class PrivateTransactionSubmission:
    """Handle for one accepted eth_sendPrivateTransaction call."""
    transaction: SignedBundleEntry
    max_block_number: int
    _wait: Callable[[Optional[float]], Awaitable[PrivateTransactionResolution]] = field(repr=False, compare=False)
    _simulate: Callable[[], Awaitable[SimulationResult]] = field(repr=False, compare=False)
    _receipts: Callable[[], Awaitable[List[Optional[Dict[str, Any]]]]] = field(repr=False, compare=False)

    async def wait(self, timeout_s: Optional[float] = None) -> PrivateTransactionResolution:
        return await self._wait(timeout_s)

    async def simulate(self) -> SimulationResult:
        return await self._simulate()

    async def receipts(self) -> List[Optional[Dict[str, Any]]]:
        return await self._receipts()


def entries_of(bundle: Union[SignedBundle, Sequence[str]]) -> Tuple[SignedBundleEntry, ...]:
    """Accept either a SignedBundle or a list of raw transactions."""
    if isinstance(bundle, SignedBundle):
        return bundle.entries
    return SignedBundle.from_raw(bundle).entries
