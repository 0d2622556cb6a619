# Copyright (c) 2026 Emiliano G Solazzi
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licenses available. Contact: emiliano.arlington@gmail.com
"""
Bitcoin wire primitives: CompactSize, hashes, transactions, scripts, addresses.
Reference: https://github.com/bitcoin/bips/blob/master/bip-0144.mediawiki
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from base58 import b58encode_check
from bech32 import encode as _bech32_encode
from Crypto.Hash import RIPEMD160

from custody_errors import InvalidChoice, PsbtDecodeError


def compact_size(n: int) -> bytes:
    """Bitcoin CompactSize encoding."""
    if n < 0xfd:
        return struct.pack("<B", n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack("<H", n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack("<I", n)
    else:
        return b'\xff' + struct.pack("<Q", n)


def read_compact_size(data: bytes, pos: int) -> Tuple[int, int]:
    """Decode a CompactSize at *pos*. Returns (value, new_pos)."""
    if pos >= len(data):
        raise PsbtDecodeError(f"Unexpected end of data at offset {pos}")
    b0 = data[pos]
    if b0 < 0xfd:
        return b0, pos + 1
    fmt, width = {0xfd: ("<H", 2), 0xfe: ("<I", 4), 0xff: ("<Q", 8)}[b0]
    if pos + 1 + width > len(data):
        raise PsbtDecodeError(f"Truncated CompactSize at offset {pos}")
    return struct.unpack_from(fmt, data, pos + 1)[0], pos + 1 + width


def read_bytes(data: bytes, pos: int, n: int) -> Tuple[bytes, int]:
    """Slice exactly *n* bytes or fail."""
    if pos + n > len(data):
        raise PsbtDecodeError(
            f"Need {n} bytes at offset {pos}, only {len(data) - pos} left"
        )
    return data[pos:pos + n], pos + n


def sha256d(msg: bytes) -> bytes:
    """SHA-256(SHA-256(msg))"""
    return hashlib.sha256(hashlib.sha256(msg).digest()).digest()


def hash160(msg: bytes) -> bytes:
    """RIPEMD-160(SHA-256(msg))"""
    return RIPEMD160.new(hashlib.sha256(msg).digest()).digest()


# ============================================================
# NETWORKS
# ============================================================

@dataclass(frozen=True)
class NetworkParams:
    name: str
    p2pkh_prefix: int
    p2sh_prefix: int
    bech32_hrp: str
    xprv_version: bytes
    xpub_version: bytes


_MAINNET = NetworkParams(
    "mainnet", 0x00, 0x05, "bc",
    bytes.fromhex("0488ade4"), bytes.fromhex("0488b21e"),
)
_TESTNET = NetworkParams(
    "testnet", 0x6f, 0xc4, "tb",
    bytes.fromhex("04358394"), bytes.fromhex("043587cf"),
)

NETWORKS: Dict[str, NetworkParams] = {
    "mainnet": _MAINNET,
    "testnet": _TESTNET,
    "signet":  NetworkParams("signet", 0x6f, 0xc4, "tb",
                             _TESTNET.xprv_version, _TESTNET.xpub_version),
    "regtest": NetworkParams("regtest", 0x6f, 0xc4, "bcrt",
                             _TESTNET.xprv_version, _TESTNET.xpub_version),
}
_NETWORK_ALIASES = {"bitcoin": "mainnet"}


def network_params(network: str) -> NetworkParams:
    """Look up a network by name (``bitcoin`` is accepted for mainnet)."""
    key = _NETWORK_ALIASES.get(network, network)
    try:
        return NETWORKS[key]
    except KeyError:
        raise InvalidChoice(network, NETWORKS) from None


# ============================================================
# AMOUNTS
# ============================================================

COIN = 100_000_000


def format_btc(sats: int) -> str:
    """Render satoshis as ``0.00100000 BTC`` (sign kept for deltas)."""
    sign = "-" if sats < 0 else ""
    whole, frac = divmod(abs(sats), COIN)
    return f"{sign}{whole}.{frac:08d} BTC"


# ============================================================
# SCRIPTS
# ============================================================

OP_0 = 0x00
OP_1 = 0x51
OP_16 = 0x60
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xa9
OP_CHECKSIG = 0xac
OP_CHECKMULTISIG = 0xae


def is_p2pk(script: bytes) -> bool:
    return (
        (len(script) == 67 and script[0] == 0x41 and script[66] == OP_CHECKSIG)
        or (len(script) == 35 and script[0] == 0x21 and script[34] == OP_CHECKSIG)
    )


def is_p2pkh(script: bytes) -> bool:
    return (
        len(script) == 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == 0x14
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    )


def is_p2sh(script: bytes) -> bool:
    return (
        len(script) == 23
        and script[0] == OP_HASH160
        and script[1] == 0x14
        and script[22] == OP_EQUAL
    )


def is_p2wpkh(script: bytes) -> bool:
    return len(script) == 22 and script[0] == OP_0 and script[1] == 0x14


def is_p2wsh(script: bytes) -> bool:
    return len(script) == 34 and script[0] == OP_0 and script[1] == 0x20


def witness_program(script: bytes) -> Optional[Tuple[int, bytes]]:
    """BIP-141 witness program: (version, program) or None."""
    if not 4 <= len(script) <= 42:
        return None
    op = script[0]
    if op != OP_0 and not OP_1 <= op <= OP_16:
        return None
    if script[1] != len(script) - 2:
        return None
    version = 0 if op == OP_0 else op - OP_1 + 1
    program = script[2:]
    if version == 0 and len(program) not in (20, 32):
        return None
    return version, program


def address_from_script(script: bytes, network: str) -> Optional[str]:
    """
    Standard address for *script*, or None when the script has no address
    form (bare public key, multisig, OP_RETURN, ...).
    """
    params = network_params(network)
    if is_p2pkh(script):
        return b58encode_check(bytes([params.p2pkh_prefix]) + script[3:23]).decode()
    if is_p2sh(script):
        return b58encode_check(bytes([params.p2sh_prefix]) + script[2:22]).decode()
    wp = witness_program(script)
    if wp is not None:
        version, program = wp
        # bech32 for v0, bech32m for v1+
        return _bech32_encode(params.bech32_hrp, version, list(program))
    return None


# ============================================================
# TRANSACTIONS
# ============================================================

@dataclass(frozen=True)
class OutPoint:
    txid: str     # big-endian display hex
    vout: int

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class TxOut:
    value: int            # satoshi
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return (
            struct.pack("<q", self.value)
            + compact_size(len(self.script_pubkey)) + self.script_pubkey
        )

    @classmethod
    def parse(cls, data: bytes, pos: int = 0) -> Tuple["TxOut", int]:
        raw_value, pos = read_bytes(data, pos, 8)
        spk_len, pos = read_compact_size(data, pos)
        spk, pos = read_bytes(data, pos, spk_len)
        return cls(struct.unpack("<q", raw_value)[0], spk), pos


@dataclass(frozen=True)
class Transaction:
    version: int = 2
    inputs: Tuple[TxIn, ...] = field(default_factory=tuple)
    outputs: Tuple[TxOut, ...] = field(default_factory=tuple)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        segwit = include_witness and self.has_witness
        raw = struct.pack("<I", self.version)
        if segwit:
            raw += b"\x00\x01"
        raw += compact_size(len(self.inputs))
        for txin in self.inputs:
            raw += bytes.fromhex(txin.previous_output.txid)[::-1]
            raw += struct.pack("<I", txin.previous_output.vout)
            raw += compact_size(len(txin.script_sig)) + txin.script_sig
            raw += struct.pack("<I", txin.sequence)
        raw += compact_size(len(self.outputs))
        for txout in self.outputs:
            raw += txout.serialize()
        if segwit:
            for txin in self.inputs:
                raw += compact_size(len(txin.witness))
                for item in txin.witness:
                    raw += compact_size(len(item)) + item
        raw += struct.pack("<I", self.locktime)
        return raw

    @property
    def txid(self) -> str:
        return sha256d(self.serialize(include_witness=False))[::-1].hex()

    @property
    def weight(self) -> int:
        """BIP-141 weight: base size * 3 + total size."""
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize(include_witness=True))
        return base * 3 + total

    @classmethod
    def parse(cls, data: bytes) -> "Transaction":
        """Parse a legacy or BIP-144 segwit serialisation; rejects trailing bytes."""
        tx, pos = cls.parse_from(data, 0)
        if pos != len(data):
            raise PsbtDecodeError(
                f"{len(data) - pos} trailing bytes after transaction"
            )
        return tx

    @classmethod
    def parse_from(cls, data: bytes, pos: int) -> Tuple["Transaction", int]:
        raw, pos = read_bytes(data, pos, 4)
        version = struct.unpack("<I", raw)[0]

        segwit = data[pos:pos + 2] == b"\x00\x01"
        if segwit:
            pos += 2

        n_in, pos = read_compact_size(data, pos)
        prevouts: List[Tuple[OutPoint, bytes, int]] = []
        for _ in range(n_in):
            txid_le, pos = read_bytes(data, pos, 32)
            raw, pos = read_bytes(data, pos, 4)
            vout = struct.unpack("<I", raw)[0]
            script_len, pos = read_compact_size(data, pos)
            script_sig, pos = read_bytes(data, pos, script_len)
            raw, pos = read_bytes(data, pos, 4)
            sequence = struct.unpack("<I", raw)[0]
            prevouts.append((OutPoint(txid_le[::-1].hex(), vout), script_sig, sequence))

        n_out, pos = read_compact_size(data, pos)
        outputs: List[TxOut] = []
        for _ in range(n_out):
            txout, pos = TxOut.parse(data, pos)
            outputs.append(txout)

        witnesses: List[Tuple[bytes, ...]] = [() for _ in prevouts]
        if segwit:
            for i in range(n_in):
                n_items, pos = read_compact_size(data, pos)
                items = []
                for _ in range(n_items):
                    item_len, pos = read_compact_size(data, pos)
                    item, pos = read_bytes(data, pos, item_len)
                    items.append(item)
                witnesses[i] = tuple(items)

        raw, pos = read_bytes(data, pos, 4)
        locktime = struct.unpack("<I", raw)[0]

        inputs = tuple(
            TxIn(outpoint, script_sig, sequence, witness)
            for (outpoint, script_sig, sequence), witness in zip(prevouts, witnesses)
        )
        return cls(version, inputs, tuple(outputs), locktime), pos
