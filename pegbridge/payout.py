# payout.py
"""
ERC20 transfer submission for the treasury account.

The submitter broadcasts and returns the transaction hash as soon as the node
accepts it. It never waits for a receipt; "accepted by the node" is the
success boundary for a settlement.
"""
import json
import threading
from typing import Any, Dict, Optional, Protocol

from eth_account import Account
from loguru import logger
from web3 import Web3

from .config import BridgeConfig
from .errors import BridgeError, ConfigError, InvalidAddress, SubmissionRejected, ZeroSettlementAmount
from .rates import make_web3

# Minimal ERC20 ABI: transfer
ERC20_ABI = json.loads("""
[
  {
    "constant": false,
    "inputs": [
      {"name": "_to", "type": "address"},
      {"name": "_value", "type": "uint256"}
    ],
    "name": "transfer",
    "outputs": [{"name": "", "type": "bool"}],
    "type": "function"
  }
]
""")


class Signer(Protocol):
    """What the submitter needs from an account: an address, a nonce, a signature."""

    address: str

    def current_nonce(self) -> int:
        ...

    def sign(self, tx: Dict[str, Any]) -> bytes:
        ...


class LocalAccountSigner:
    """Signs with a private key held in process memory."""

    def __init__(self, w3: Web3, private_key: str, expected_address: Optional[str] = None):
        try:
            acct = Account.from_key(private_key)
        except Exception as e:
            raise ConfigError(f"invalid signer private key: {type(e).__name__}") from e
        if expected_address and acct.address.lower() != expected_address.strip().lower():
            raise ConfigError("SIGNER_ADDRESS does not match SIGNER_PRIVATE_KEY address")
        self.w3 = w3
        self._acct = acct
        self.address = acct.address

    def current_nonce(self) -> int:
        return int(self.w3.eth.get_transaction_count(self.address, "pending"))

    def sign(self, tx: Dict[str, Any]) -> bytes:
        signed = self._acct.sign_transaction(tx)
        return bytes(signed.raw_transaction)


def is_evm_address(addr: Any) -> bool:
    return isinstance(addr, str) and Web3.is_address(addr.strip())


class TokenTransferSubmitter:
    def __init__(self, w3: Web3, token_address: str, signer: Signer, chain_id: int, gas_mult: float = 1.15):
        self.w3 = w3
        self.token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        self.signer = signer
        self.chain_id = int(chain_id)
        self.gas_mult = float(gas_mult)
        # one in-flight nonce per signer
        self._send_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: BridgeConfig, w3: Optional[Web3] = None) -> "TokenTransferSubmitter":
        w3 = w3 or make_web3(cfg.rpc_url, cfg.rpc_timeout_sec)
        signer = LocalAccountSigner(w3, cfg.signer_private_key, expected_address=cfg.signer_address)
        return cls(w3, cfg.settlement_token, signer, cfg.chain_id, cfg.gas_mult)

    def _apply_fees(self, tx: Dict[str, Any]) -> None:
        # Try EIP-1559 first; fallback to legacy gasPrice
        try:
            latest = self.w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
        except Exception:
            base_fee = None

        if base_fee is not None:
            prio = Web3.to_wei(1, "gwei")
            tx.pop("gasPrice", None)
            tx["maxPriorityFeePerGas"] = prio
            tx["maxFeePerGas"] = int(base_fee * 2 + prio)
        else:
            tx.pop("maxPriorityFeePerGas", None)
            tx.pop("maxFeePerGas", None)
            tx["gasPrice"] = self.w3.eth.gas_price

    def submit(self, to_address: str, amount: int) -> str:
        """Sign and broadcast transfer(to_address, amount). Returns the 0x tx hash."""
        if int(amount) <= 0:
            raise ZeroSettlementAmount(f"refusing to send non-positive amount {amount}")
        if not is_evm_address(to_address):
            raise InvalidAddress(f"invalid destination: {to_address!r}")
        to_addr = Web3.to_checksum_address(to_address.strip())

        with self._send_lock:
            try:
                nonce = self.signer.current_nonce()
                tx = self.token.functions.transfer(to_addr, int(amount)).build_transaction({
                    "chainId": self.chain_id,
                    "from": self.signer.address,
                    "nonce": nonce,
                })

                est = self.w3.eth.estimate_gas(tx)
                tx["gas"] = max(21000, int(est * self.gas_mult))
                self._apply_fees(tx)

                raw = self.signer.sign(tx)
                tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(raw))
            except BridgeError:
                raise
            except Exception as e:
                raise SubmissionRejected(f"transfer to={to_addr} amount={amount} failed: {e!r}") from e

        logger.info(f"[payout] to={to_addr} amount={amount} nonce={nonce} tx={tx_hash}")
        return tx_hash
