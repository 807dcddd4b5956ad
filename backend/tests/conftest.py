import pytest
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import keccak

from hidden_orders.core.crypto.commitment import BN254_SCALAR_FIELD, CommitmentEngine
from hidden_orders.infrastructure.blockchain.signer import LocalOrderSigner
from hidden_orders.infrastructure.storage.order_catalog import FileLock, OrderCatalog
from hidden_orders.infrastructure.zkp.zkp_service import CircuitArtifacts, ProofPipeline, ProverPool
from hidden_orders.schemas.orders import OrderParameters, SecretParameters
from hidden_orders.services.authorization import AuthorizationService
from hidden_orders.services.registry import OrderRegistry

# Well-known throwaway key; never funded.
MAKER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
MAKER = Account.from_key(MAKER_KEY).address
OTHER_MAKER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ROUTER = "0x111111125421cA6dc452d289314280a0f8842A65"
PREDICATE = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CHAIN_ID = 1

SECRET_PRICE = 3000_000000
SECRET_AMOUNT = 3000_000000
NONCE = 123456789


def fake_poseidon(a: int, b: int, c: int) -> int:
    """Deterministic stand-in for Poseidon3 so tests run without Node."""
    digest = keccak(abi_encode(["uint256", "uint256", "uint256"], [a, b, c]))
    return int.from_bytes(digest, "big") % BN254_SCALAR_FIELD


class FakeProver:
    """Returns a well-formed snarkjs proof whose public signals echo the inputs."""

    def __init__(self, valid: int = 1):
        self.valid = valid
        self.calls = 0

    def prove(self, inputs, artifacts):
        self.calls += 1
        proof = {
            "pi_a": ["11", "12", "1"],
            "pi_b": [["21", "22"], ["23", "24"], ["1", "0"]],
            "pi_c": ["31", "32", "1"],
            "protocol": "groth16",
            "curve": "bn128",
        }
        signals = [
            str(self.valid),
            str(inputs.commit),
            str(inputs.nonce),
            str(inputs.offered_price),
            str(inputs.offered_amount),
        ]
        return proof, signals


@pytest.fixture
def engine():
    return CommitmentEngine(hasher=fake_poseidon)


@pytest.fixture
def prover():
    return FakeProver()


@pytest.fixture
def pipeline(engine, prover):
    return ProofPipeline(engine, prover=prover)


@pytest.fixture
def artifacts():
    return CircuitArtifacts(wasm_path="test.wasm", zkey_path="test.zkey")


@pytest.fixture
def signer():
    return LocalOrderSigner(MAKER_KEY)


@pytest.fixture
def pool():
    p = ProverPool(max_workers=2)
    yield p
    p.shutdown(wait=False)


@pytest.fixture
def service(pipeline, signer, artifacts, pool):
    return AuthorizationService(
        registry=OrderRegistry(),
        pipeline=pipeline,
        signer=signer,
        predicate_address=PREDICATE,
        chain_id=CHAIN_ID,
        router_address=ROUTER,
        artifacts=artifacts,
        pool=pool,
        prover_timeout=5.0,
    )


@pytest.fixture
def commitment(engine):
    return engine.commit(SECRET_PRICE, SECRET_AMOUNT, NONCE)


def make_params(commitment: int, maker: str = MAKER) -> OrderParameters:
    return OrderParameters(
        maker=maker,
        maker_asset=WETH,
        taker_asset=USDC,
        making_amount=10**18,
        taking_amount=3500_000000,
        commitment=commitment,
        original_salt=commitment,
    )


def make_secrets(maker: str = MAKER, price: int = SECRET_PRICE,
                 amount: int = SECRET_AMOUNT, nonce: int = NONCE) -> SecretParameters:
    return SecretParameters(
        secret_price=price, secret_amount=amount, nonce=nonce, maker_identity=maker,
    )


@pytest.fixture
def order_hash():
    return "0x" + "ab" * 32


@pytest.fixture
def registered(service, commitment, order_hash):
    service.register_order(commitment, make_params(commitment), make_secrets(), order_hash)
    return order_hash


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "orders.json"
    lock = FileLock(tmp_path / "orders.json.lock", timeout=0.5, retry_interval=0.05, stale_after=30.0)
    return OrderCatalog(str(path), lock=lock)
