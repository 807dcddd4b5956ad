import logging
from typing import Optional, Protocol

from eth_account import Account
from web3 import Web3

from hidden_orders.core.config import settings
from hidden_orders.infrastructure.blockchain.order_builder import signable_order
from hidden_orders.schemas.orders import OrderSignature, OrderStruct

logger = logging.getLogger(__name__)


class OrderSigner(Protocol):
    @property
    def address(self) -> str:
        ...

    def sign_order(self, order: OrderStruct, chain_id: int, verifying_contract: str) -> OrderSignature:
        ...


class LocalOrderSigner:
    """
    Signs orders with a maker key held in process memory.

    The signature is the standard 65-byte (r, s, v) form; `vs` is the
    EIP-2098 compact encoding the router's fillOrder() expects.
    """

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_order(self, order: OrderStruct, chain_id: int, verifying_contract: str) -> OrderSignature:
        if Web3.to_checksum_address(order.maker) != self.address:
            logger.warning(
                f"[AUTHZ] Signing order for maker {order.maker} with key of {self.address}"
            )
        signed = self._account.sign_message(signable_order(order, chain_id, verifying_contract))
        vs = signed.s | ((signed.v - 27) << 255)
        return OrderSignature(
            signature="0x" + bytes(signed.signature).hex(),
            r="0x" + signed.r.to_bytes(32, "big").hex(),
            vs="0x" + vs.to_bytes(32, "big").hex(),
        )


_signer_instance: Optional[LocalOrderSigner] = None


def get_signer() -> Optional[LocalOrderSigner]:
    """Lazy signer from MAKER_PRIVATE_KEY. None when no key is configured."""
    global _signer_instance
    if _signer_instance is None and settings.MAKER_PRIVATE_KEY:
        _signer_instance = LocalOrderSigner(settings.MAKER_PRIVATE_KEY)
        logger.info(f"[AUTHZ] Maker signer loaded for {_signer_instance.address}")
    return _signer_instance
