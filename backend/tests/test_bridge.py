import shutil
import subprocess

import pytest

from hidden_orders.core.crypto import bridge
from hidden_orders.core.crypto.bridge import ToolchainError, ZKToolchainBridge
from hidden_orders.core.crypto.commitment import CommitmentEngine

POSEIDON3_1_2_3 = 6542985608222806190361240322586112750744169038454362455181422643027100751666


def _poseidon_lite_available() -> bool:
    if not bridge._node_path:
        return False
    probe = subprocess.run(
        [bridge._node_path, "-e", "require.resolve('poseidon-lite')"],
        capture_output=True,
        cwd=ZKToolchainBridge().toolchain_dir,
    )
    return probe.returncode == 0


requires_poseidon = pytest.mark.skipif(
    not _poseidon_lite_available(), reason="node with poseidon-lite not installed"
)
requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")


@requires_poseidon
def test_poseidon3_known_vector():
    assert ZKToolchainBridge().poseidon3(1, 2, 3) == POSEIDON3_1_2_3


@requires_poseidon
def test_default_engine_uses_node_poseidon():
    assert CommitmentEngine().commit(1, 2, 3) == POSEIDON3_1_2_3


def test_poseidon3_without_node(monkeypatch):
    monkeypatch.setattr(bridge, "_node_path", None)
    b = ZKToolchainBridge()
    assert b.backend == "unavailable"
    with pytest.raises(ToolchainError):
        b.poseidon3(1, 2, 3)


def _fake_snarkjs(tmp_path, body):
    script = tmp_path / "snarkjs.sh"
    script.write_text("#!/bin/sh\n" + body)
    return ["sh", str(script)]


@requires_sh
def test_fullprove_reads_snarkjs_output(tmp_path):
    # args: groth16 fullprove input wasm zkey proof public
    cmd = _fake_snarkjs(tmp_path, (
        'echo \'{"pi_a": ["1", "2", "1"], "protocol": "groth16"}\' > "$6"\n'
        'echo \'["1", 2, "3"]\' > "$7"\n'
    ))
    b = ZKToolchainBridge(toolchain_dir=str(tmp_path), snarkjs_command=cmd)

    proof, signals = b.fullprove({"secretPrice": "1"}, "c.wasm", "c.zkey")
    assert proof["protocol"] == "groth16"
    assert signals == ["1", "2", "3"]


@requires_sh
def test_fullprove_failure_is_toolchain_error(tmp_path):
    cmd = _fake_snarkjs(tmp_path, 'echo "Error: Assert Failed" >&2\nexit 1\n')
    b = ZKToolchainBridge(toolchain_dir=str(tmp_path), snarkjs_command=cmd)

    with pytest.raises(ToolchainError, match="Assert Failed"):
        b.fullprove({}, "c.wasm", "c.zkey")


@requires_sh
def test_fullprove_without_output_is_toolchain_error(tmp_path):
    cmd = _fake_snarkjs(tmp_path, "exit 0\n")
    b = ZKToolchainBridge(toolchain_dir=str(tmp_path), snarkjs_command=cmd)

    with pytest.raises(ToolchainError):
        b.fullprove({}, "c.wasm", "c.zkey")
