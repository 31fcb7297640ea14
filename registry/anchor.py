# registry/anchor.py
"""
Ledger anchor client.

Thin web3.py wrapper over the ProjectRegistry and ScriptNFT contracts on an
EVM chain. Every write is one bounded network call; there is no internal
retry. Retry policy lives in the orchestrator so failures stay visible there.

`anchor()` and `mint()` never raise: any error comes back as a result with
`success=False` and an `error_kind` of "unavailable" (transport, timeout) or
"failed" (the chain executed and rejected the call).

The client is a process-wide, lazily initialized singleton. Initialization
failure is not cached, so the next request tries again; reset_anchor_client()
drops a live instance so the next call re-initializes.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

import requests
from django.conf import settings
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound
from web3.logs import DISCARD

from .constants import ERROR_KIND_FAILED, ERROR_KIND_UNAVAILABLE

logger = logging.getLogger("scribe.registry.anchor")


PROJECT_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "projectHash", "type": "bytes32"},
            {"name": "externalId", "type": "string"},
        ],
        "name": "createProject",
        "outputs": [{"name": "projectId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "projectId", "type": "uint256"},
            {"indexed": True, "name": "projectHash", "type": "bytes32"},
            {"indexed": False, "name": "externalId", "type": "string"},
        ],
        "name": "ProjectCreated",
        "type": "event",
    },
]

SCRIPT_NFT_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "contentRef", "type": "string"},
            {"name": "submissionId", "type": "string"},
        ],
        "name": "mintScriptNFT",
        "outputs": [{"name": "tokenId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "contentRef", "type": "string"},
        ],
        "name": "ScriptNFTMinted",
        "type": "event",
    },
]

# Revert reasons the registry uses when a hash is already on-chain
DUPLICATE_REVERT_MARKERS = ("already anchored", "already registered", "already exists", "duplicate")


class AnchorClientError(Exception):
    """Raised only during initialization; operations return results instead."""
    pass


@dataclass
class AnchorResult:
    success: bool
    transaction_hash: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    # True when the hash was already on-chain and the existing tx was reused
    duplicate: bool = False


@dataclass
class MintResult:
    success: bool
    token_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


def classify_error(exc: Exception) -> str:
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError, TimeExhausted, TimeoutError)):
        return ERROR_KIND_UNAVAILABLE
    return ERROR_KIND_FAILED


def _is_duplicate_revert(exc: Exception) -> bool:
    message = (getattr(exc, "message", None) or str(exc)).lower()
    return any(marker in message for marker in DUPLICATE_REVERT_MARKERS)


class LedgerAnchorClient:
    """
    Chain client for project anchoring and submission minting.

    Not connected until connect() is called.
    """

    def __init__(
        self,
        rpc_url: str,
        operator_private_key: str,
        registry_address: str = "",
        nft_address: str = "",
        timeout: float = 15.0,
        confirmation_threshold: int = 1,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.confirmation_threshold = confirmation_threshold
        self._operator_private_key = operator_private_key
        self._registry_address = registry_address
        self._nft_address = nft_address
        self._w3: Optional[Web3] = None
        self._operator = None
        self._chain_id: Optional[int] = None
        self._registry = None
        self._nft = None

    @classmethod
    def from_settings(cls) -> "LedgerAnchorClient":
        config = settings.REGISTRY
        return cls(
            rpc_url=config["RPC_URL"],
            operator_private_key=config["OPERATOR_PRIVATE_KEY"],
            registry_address=config["PROJECT_REGISTRY_ADDRESS"],
            nft_address=config["SCRIPT_NFT_ADDRESS"],
            timeout=config["RPC_TIMEOUT"],
            confirmation_threshold=config["CONFIRMATION_THRESHOLD"],
        )

    # ==================== Lifecycle ====================

    def connect(self) -> None:
        """
        Open the RPC connection, verify the chain is reachable and load the
        operator account that signs and pays for every registry operation.
        """
        if not self.rpc_url:
            raise AnchorClientError("Chain RPC URL not configured")
        if not self._operator_private_key:
            raise AnchorClientError("Operator private key not configured")

        w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout}))
        try:
            self._chain_id = w3.eth.chain_id
        except Exception as e:
            raise AnchorClientError(f"Failed to connect to chain RPC: {e}") from e

        try:
            self._operator = Account.from_key(self._operator_private_key)
        except Exception as e:
            raise AnchorClientError(f"Invalid operator key: {e}") from e

        if self._registry_address:
            self._registry = w3.eth.contract(
                address=Web3.to_checksum_address(self._registry_address),
                abi=PROJECT_REGISTRY_ABI,
            )
        if self._nft_address:
            self._nft = w3.eth.contract(
                address=Web3.to_checksum_address(self._nft_address),
                abi=SCRIPT_NFT_ABI,
            )

        self._w3 = w3
        logger.info(
            f"Anchor client connected (chain_id={self._chain_id}, operator={self._operator.address}, "
            f"registry={'yes' if self._registry else 'no'}, nft={'yes' if self._nft else 'no'})"
        )

    @property
    def is_connected(self) -> bool:
        return self._w3 is not None

    # ==================== Operations ====================

    def anchor(self, subject_id: str, payload_hash: str) -> AnchorResult:
        """
        Submit `payload_hash` to the project registry. Returns as soon as the
        transaction is broadcast; finality is settled later by reconciliation.
        """
        if self._registry is None:
            return AnchorResult(
                success=False,
                error="Project registry contract not configured",
                error_kind=ERROR_KIND_UNAVAILABLE,
            )

        try:
            fn = self._registry.functions.createProject(
                Web3.to_bytes(hexstr=payload_hash), subject_id
            )
            tx_hash = self._send(fn)
        except ContractLogicError as e:
            if _is_duplicate_revert(e):
                return self._resolve_duplicate(subject_id, payload_hash, e)
            logger.warning(f"Anchor rejected for {subject_id}: {e}")
            return AnchorResult(success=False, error=str(e), error_kind=ERROR_KIND_FAILED)
        except Exception as e:
            kind = classify_error(e)
            logger.warning(f"Anchor call failed for {subject_id} ({kind}): {e}")
            return AnchorResult(success=False, error=str(e), error_kind=kind)

        logger.info(f"Anchor broadcast for {subject_id}: {tx_hash}")
        return AnchorResult(success=True, transaction_hash=tx_hash)

    def mint(self, owner_wallet: str, content_ref: str, submission_id: str) -> MintResult:
        """
        Mint the ownership token for a stored content object.

        Waits (bounded by the client timeout) for the receipt, since the
        token id is only known from the mint event.
        """
        if self._nft is None:
            return MintResult(
                success=False,
                error="Script NFT contract not configured",
                error_kind=ERROR_KIND_UNAVAILABLE,
            )

        tx_hash = None
        try:
            fn = self._nft.functions.mintScriptNFT(
                Web3.to_checksum_address(owner_wallet), content_ref, submission_id
            )
            tx_hash = self._send(fn)
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.timeout, poll_latency=0.5
            )
        except Exception as e:
            kind = classify_error(e)
            logger.warning(f"Mint failed for {submission_id} ({kind}): {e}")
            return MintResult(success=False, transaction_hash=tx_hash, error=str(e), error_kind=kind)

        if receipt["status"] != 1:
            logger.warning(f"Mint reverted for {submission_id}: {tx_hash}")
            return MintResult(
                success=False,
                transaction_hash=tx_hash,
                error="Mint transaction reverted",
                error_kind=ERROR_KIND_FAILED,
            )

        events = self._nft.events.ScriptNFTMinted().process_receipt(receipt, errors=DISCARD)
        if not events:
            return MintResult(
                success=False,
                transaction_hash=tx_hash,
                error="Mint event not found in transaction logs",
                error_kind=ERROR_KIND_FAILED,
            )

        token_id = str(events[0]["args"]["tokenId"])
        logger.info(f"Minted token {token_id} for {submission_id}: {tx_hash}")
        return MintResult(success=True, token_id=token_id, transaction_hash=tx_hash)

    def transaction_status(self, transaction_hash: str) -> Optional[str]:
        """
        Finality probe used by reconciliation: "pending", "confirmed",
        "failed", or None when the RPC could not answer.
        """
        try:
            receipt = self._w3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound:
            return "pending"
        except Exception as e:
            logger.warning(f"Receipt lookup failed for {transaction_hash}: {e}")
            return None

        if receipt["status"] != 1:
            return "failed"

        try:
            current_block = self._w3.eth.block_number
        except Exception as e:
            logger.warning(f"Block number lookup failed: {e}")
            return None

        confirmations = current_block - receipt["blockNumber"] + 1
        return "confirmed" if confirmations >= self.confirmation_threshold else "pending"

    # ==================== Helpers ====================

    def _send(self, fn) -> str:
        tx = fn.build_transaction({
            "from": self._operator.address,
            "nonce": self._w3.eth.get_transaction_count(self._operator.address, "pending"),
            "chainId": self._chain_id,
        })
        signed = self._operator.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def _resolve_duplicate(self, subject_id: str, payload_hash: str, exc: Exception) -> AnchorResult:
        """
        The registry already holds this hash. Treat it as anchored only when
        an on-chain ProjectCreated log carries exactly the same payload hash.
        """
        expected = Web3.to_bytes(hexstr=payload_hash)
        try:
            logs = self._registry.events.ProjectCreated().get_logs(
                argument_filters={"projectHash": expected},
                from_block=0,
            )
        except Exception as e:
            logger.warning(f"Duplicate lookup failed for {subject_id}: {e}")
            return AnchorResult(success=False, error=str(exc), error_kind=classify_error(e))

        for log in logs:
            if bytes(log["args"]["projectHash"]) == expected:
                existing = Web3.to_hex(log["transactionHash"])
                logger.info(
                    f"Payload hash for {subject_id} already anchored "
                    f"(external id {log['args']['externalId']}); reusing {existing}"
                )
                return AnchorResult(success=True, transaction_hash=existing, duplicate=True)

        return AnchorResult(success=False, error=str(exc), error_kind=ERROR_KIND_FAILED)


# ==================== Process-wide instance ====================

_anchor_client: Optional[LedgerAnchorClient] = None
_init_lock = threading.Lock()


def get_anchor_client() -> Optional[LedgerAnchorClient]:
    """
    Return the shared client, initializing it on first use.
    Returns None when the chain is not reachable or not configured.
    """
    global _anchor_client

    if _anchor_client is not None:
        return _anchor_client

    # Connect outside the lock; a concurrent initializer may win the install
    client = LedgerAnchorClient.from_settings()
    try:
        client.connect()
    except AnchorClientError as e:
        logger.error(f"Anchor client unavailable: {e}")
        return None

    with _init_lock:
        if _anchor_client is None:
            _anchor_client = client
        return _anchor_client


def reset_anchor_client() -> None:
    global _anchor_client
    with _init_lock:
        _anchor_client = None
    logger.info("Anchor client reset; next use re-initializes")


def anchor_client_state() -> str:
    return "ready" if _anchor_client is not None else "uninitialized"
