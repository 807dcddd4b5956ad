"""
In-memory registry of maker secrets and order parameters.

Secrets are keyed by the full commitment. Order parameters are keyed by the
commitment and, when supplied, by the order hash a taker will quote. All
access goes through one lock; registration is last-write-wins.
"""

import logging
import threading
from typing import Dict, Optional

from hidden_orders.schemas.orders import OrderParameters, SecretParameters

logger = logging.getLogger(__name__)


class OrderRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._secrets: Dict[int, SecretParameters] = {}
        self._params: Dict[str, OrderParameters] = {}

    @staticmethod
    def _key(key: str) -> str:
        return key.lower()

    def register(
        self,
        commitment: int,
        params: OrderParameters,
        secrets: SecretParameters,
        order_hash: Optional[str] = None,
    ) -> None:
        with self._lock:
            replaced = commitment in self._secrets
            self._secrets[commitment] = secrets
            self._params[self._key(str(commitment))] = params
            if order_hash:
                self._params[self._key(order_hash)] = params

        logger.info(
            f"[AUTHZ] {'Re-registered' if replaced else 'Registered'} commitment {commitment} "
            f"| maker={secrets.maker_identity} orderHash={order_hash or '-'}"
        )

    def order_params_for(self, key: str) -> Optional[OrderParameters]:
        """Order parameters by order hash or by decimal commitment."""
        with self._lock:
            return self._params.get(self._key(key))

    def secrets_for(self, commitment: int) -> Optional[SecretParameters]:
        with self._lock:
            return self._secrets.get(commitment)

    def order_status(self, commitment: int) -> Dict[str, object]:
        """Whether secrets exist for a commitment, and for which maker. Never the secrets."""
        secrets = self.secrets_for(commitment)
        return {
            "found": secrets is not None,
            "maker": secrets.maker_identity if secrets else None,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._secrets)
