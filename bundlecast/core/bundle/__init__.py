"""
Bundle Lifecycle Layer

Sign, submit, watch and diagnose private transaction bundles:
- BundleSigner: orders and signs a mix of pre-signed and unsigned transactions
- RelayClient: authenticated submission, cancellation, simulation and stats
- InclusionWatcher: resolves a submission from new-block notifications
- ConflictDiagnoser: explains why a bundle missed its target block

Usage:
    from bundlecast.core.bundle import (
        RelayClient,
        RawItem,
        UnsignedItem,
        TransactionIntent,
        RelayError,
    )
    from bundlecast.providers.chain import JsonRpcChainProvider
    from bundlecast.providers.relay import RelayProvider

    chain = JsonRpcChainProvider()
    client = RelayClient(RelayProvider(), chain)

    bundle = await client.sign_bundle([
        UnsignedItem(TransactionIntent(to="0x..."), signer),
        RawItem("0x02f8..."),
    ])
    submission = await client.submit(bundle, await chain.get_block_number() + 1)
    if not isinstance(submission, RelayError):
        resolution = await submission.wait()
"""

from .models import (
    BundleGasPricing,
    BundleItem,
    BundleOptions,
    BundleSubmission,
    ConflictRecord,
    ConflictType,
    InclusionResolution,
    PrivateTransactionResolution,
    PrivateTransactionSubmission,
    RawItem,
    RelayError,
    SignedBundle,
    SignedBundleEntry,
    SimulationFailure,
    SimulationResult,
    SimulationSuccess,
    TransactionIntent,
    TransactionSimulation,
    UnsignedItem,
)

from bundlecast.core.errors import (
    BundleError,
    BundleInputError,
    DecodeError,
    InvalidNonceError,
    RelayTransportError,
    RateLimitError,
    ChainProviderError,
    DiagnosisPreconditionError,
    BlockNotIndexedError,
    TargetBundleRevertsError,
    DiagnosisSimulationError,
    BundleWaitTimeout,
)

from .codec import decode_signed_transaction

from .signer import (
    BundleSigner,
    LocalAccountSigner,
)

from .watcher import InclusionWatcher

from .relay_client import RelayClient

from .diagnoser import (
    ConflictDiagnoser,
    calculate_bundle_pricing,
)

__all__ = [
    # Models
    "BundleGasPricing",
    "BundleItem",
    "BundleOptions",
    "BundleSubmission",
    "ConflictRecord",
    "ConflictType",
    "InclusionResolution",
    "PrivateTransactionResolution",
    "PrivateTransactionSubmission",
    "RawItem",
    "RelayError",
    "SignedBundle",
    "SignedBundleEntry",
    "SimulationFailure",
    "SimulationResult",
    "SimulationSuccess",
    "TransactionIntent",
    "TransactionSimulation",
    "UnsignedItem",
    # Errors
    "BundleError",
    "BundleInputError",
    "DecodeError",
    "InvalidNonceError",
    "RelayTransportError",
    "RateLimitError",
    "ChainProviderError",
    "DiagnosisPreconditionError",
    "BlockNotIndexedError",
    "TargetBundleRevertsError",
    "DiagnosisSimulationError",
    "BundleWaitTimeout",
    # Codec
    "decode_signed_transaction",
    # Signing
    "BundleSigner",
    "LocalAccountSigner",
    # Watching
    "InclusionWatcher",
    # Relay
    "RelayClient",
    # Diagnosis
    "ConflictDiagnoser",
    "calculate_bundle_pricing",
]
