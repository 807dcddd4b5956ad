"""
ZK Toolchain Bridge: Python interface to the Node.js proving toolchain.

The arithmetic circuit, its Poseidon hash and the Groth16 prover all live in
the JavaScript ecosystem (circom / snarkjs / poseidon-lite). This bridge
locates the Node binary once at import time and runs the two operations the
core needs as subprocesses:

    poseidon3(a, b, c)            -> int          (poseidon-lite)
    fullprove(inputs, wasm, zkey) -> (proof, public_signals)   (snarkjs CLI)

Toolchain setup:
    cd $ZK_TOOLCHAIN_DIR
    npm install snarkjs poseidon-lite

Both calls block. Callers on a request path must go through ProverPool.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from hidden_orders.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# NODE DISCOVERY
# ═══════════════════════════════════════════════════════════════════════════════

_node_path: Optional[str] = None

_POSEIDON_SCRIPT = (
    "const { poseidon3 } = require('poseidon-lite');"
    "const args = process.argv.slice(-3).map(BigInt);"
    "process.stdout.write(poseidon3(args).toString());"
)


def _try_locate_node() -> Optional[str]:
    """
    Resolve the configured Node binary on PATH.

    Called once at import time and cached.
    """
    global _node_path
    _node_path = shutil.which(settings.NODE_BINARY)
    if _node_path:
        logger.info(f"[BRIDGE] Node toolchain found at '{_node_path}'")
    else:
        logger.info(
            f"[BRIDGE] Node binary '{settings.NODE_BINARY}' not on PATH, "
            f"Poseidon hashing and proving are unavailable until it is installed"
        )
    return _node_path


_try_locate_node()


class ToolchainError(RuntimeError):
    """A toolchain subprocess could not run or returned garbage."""


# ═══════════════════════════════════════════════════════════════════════════════
# BRIDGE CLASS
# ═══════════════════════════════════════════════════════════════════════════════

class ZKToolchainBridge:
    """
    Runs Poseidon hashing and Groth16 proving through the Node toolchain.

    Usage:
        bridge = ZKToolchainBridge()
        commit = bridge.poseidon3(price, amount, nonce)
        proof, signals = bridge.fullprove(inputs, wasm_path, zkey_path)
    """

    def __init__(
        self,
        toolchain_dir: Optional[str] = None,
        snarkjs_command: Optional[Sequence[str]] = None,
    ) -> None:
        self._toolchain_dir = Path(toolchain_dir or settings.ZK_TOOLCHAIN_DIR).resolve()
        self._snarkjs = list(snarkjs_command or settings.SNARKJS_COMMAND)

    @property
    def backend(self) -> str:
        """Active backend: 'node' or 'unavailable'."""
        return "node" if _node_path else "unavailable"

    @property
    def toolchain_dir(self) -> Path:
        return self._toolchain_dir

    def poseidon3(self, a: int, b: int, c: int) -> int:
        """Poseidon hash of three field elements, computed by poseidon-lite."""
        if not _node_path:
            raise ToolchainError("Node binary not available for Poseidon hashing")

        cmd = [_node_path, "-e", _POSEIDON_SCRIPT, str(a), str(b), str(c)]
        result = self._run(cmd, timeout=settings.POSEIDON_TIMEOUT_SECONDS)
        try:
            return int(result.stdout.strip())
        except ValueError:
            raise ToolchainError(f"Unexpected poseidon output: {result.stdout[:80]!r}")

    def fullprove(
        self,
        circuit_inputs: Dict[str, str],
        wasm_path: str,
        zkey_path: str,
    ) -> Tuple[Dict[str, Any], List[str]]:
        """
        Generate a Groth16 proof with `snarkjs groth16 fullprove`.

        Inputs, proof and public signals are exchanged through JSON files in
        a private temporary directory that is removed afterwards.

        Returns:
            (proof_json, public_signals) exactly as snarkjs writes them.
        """
        with tempfile.TemporaryDirectory(prefix="hidden-orders-proof-") as workdir:
            work = Path(workdir)
            input_path = work / "input.json"
            proof_path = work / "proof.json"
            public_path = work / "public.json"
            input_path.write_text(json.dumps(circuit_inputs), encoding="utf-8")

            # Command: snarkjs groth16 fullprove input.json circuit.wasm circuit.zkey proof.json public.json
            cmd = self._snarkjs + [
                "groth16", "fullprove",
                str(input_path),
                str(self._resolve(wasm_path)),
                str(self._resolve(zkey_path)),
                str(proof_path),
                str(public_path),
            ]
            self._run(cmd, timeout=None)

            try:
                proof = json.loads(proof_path.read_text(encoding="utf-8"))
                public_signals = json.loads(public_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise ToolchainError(f"snarkjs produced no readable output: {exc}")

        return proof, [str(s) for s in public_signals]

    # ── internals ──

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self._toolchain_dir / p

    def _run(self, cmd: List[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=self._toolchain_dir,
                timeout=timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolchainError(f"{cmd[0]} could not complete: {exc}")

        if result.returncode != 0:
            raise ToolchainError(
                f"{' '.join(cmd[:3])} exited with {result.returncode}: "
                f"{(result.stderr or result.stdout).strip()[:500]}"
            )
        return result


_bridge_instance: Optional[ZKToolchainBridge] = None


def get_bridge() -> ZKToolchainBridge:
    """Lazy process-wide bridge."""
    global _bridge_instance
    if _bridge_instance is None:
        _bridge_instance = ZKToolchainBridge()
    return _bridge_instance
