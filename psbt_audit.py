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
Pre-Signature PSBT Audit
========================
- BIP-174 (version 0) PSBT decoding: binary, base64, or JSON-wrapped base64
- Spent-output resolution from non_witness_utxo / witness_utxo
- Wallet attribution by BIP-32 master fingerprints
- Privacy heuristics (script types, round numbers, unnecessary input,
  address reuse)
- Fee and fee-rate from the projected fully-signed weight

Attribution Semantics:
    A wallet matches an input or output when *every* fingerprint in its
    key paths belongs to the wallet.  Signer thresholds are not checked
    and several wallets may match the same entry.  The label is a
    best-effort hint for the human reviewer, not an identification.

Determinism:
    A report depends only on the PSBT bytes, the network and the wallet
    list.  Balances are sorted by wallet name before rendering, so two
    runs over the same inputs produce identical output.
"""

from __future__ import annotations

import binascii
import json
import logging
import struct
from base64 import b64decode
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from bitcoin_protocol import (
    OP_1,
    OP_16,
    OP_CHECKMULTISIG,
    OP_CHECKSIG,
    Transaction,
    TxOut,
    address_from_script,
    compact_size,
    format_btc,
    is_p2pk,
    is_p2pkh,
    is_p2sh,
    is_p2wpkh,
    is_p2wsh,
    read_bytes,
    read_compact_size,
    witness_program,
)
from custody_errors import (
    AmbiguousOrMissingUtxo,
    InvalidWalletFile,
    NegativeFee,
    OutpointMismatch,
    OutputIndexOutOfRange,
    PsbtDecodeError,
    UnclassifiableOutputScript,
    UnestimableInput,
)

log = logging.getLogger("psbt_audit")
log.addHandler(logging.NullHandler())


# ============================================================
# BIP-174 PSBT
# ============================================================

PSBT_MAGIC = b"psbt\xff"

# BIP-174 key types
_PSBT_GLOBAL_UNSIGNED_TX = 0x00
_PSBT_IN_NON_WITNESS_UTXO = 0x00
_PSBT_IN_WITNESS_UTXO = 0x01
_PSBT_IN_REDEEM_SCRIPT = 0x04
_PSBT_IN_WITNESS_SCRIPT = 0x05
_PSBT_IN_BIP32_DERIVATION = 0x06
_PSBT_OUT_REDEEM_SCRIPT = 0x00
_PSBT_OUT_WITNESS_SCRIPT = 0x01
_PSBT_OUT_BIP32_DERIVATION = 0x02

_HARDENED = 0x80000000

RawPairs = Tuple[Tuple[bytes, bytes], ...]


@dataclass(frozen=True)
class KeyOrigin:
    """Master fingerprint + derivation path of one public key."""
    fingerprint: bytes
    path: Tuple[int, ...]

    @property
    def path_str(self) -> str:
        steps = (
            f"{i - _HARDENED}'" if i >= _HARDENED else str(i)
            for i in self.path
        )
        return "/".join(("m", *steps))

    def serialize(self) -> bytes:
        return self.fingerprint + b"".join(struct.pack("<I", i) for i in self.path)

    @classmethod
    def parse(cls, value: bytes) -> "KeyOrigin":
        if len(value) < 4 or len(value) % 4:
            raise PsbtDecodeError(
                f"BIP-32 derivation value has invalid length {len(value)}"
            )
        path = struct.unpack(f"<{len(value) // 4 - 1}I", value[4:])
        return cls(value[:4], tuple(path))


KeyPathMap = Dict[bytes, KeyOrigin]


@dataclass(frozen=True)
class PsbtInput:
    non_witness_utxo: Optional[Transaction] = None
    witness_utxo: Optional[TxOut] = None
    redeem_script: Optional[bytes] = None
    witness_script: Optional[bytes] = None
    hd_keypaths: KeyPathMap = field(default_factory=dict)
    unknown: RawPairs = ()


@dataclass(frozen=True)
class PsbtOutput:
    redeem_script: Optional[bytes] = None
    witness_script: Optional[bytes] = None
    hd_keypaths: KeyPathMap = field(default_factory=dict)
    unknown: RawPairs = ()


def _key_value(key: bytes, value: bytes) -> bytes:
    """Encode one BIP-174 key-value pair: <key-len><key><value-len><value>."""
    return compact_size(len(key)) + key + compact_size(len(value)) + value


def _read_map(data: bytes, pos: int) -> Tuple[List[Tuple[bytes, bytes]], int]:
    """Read key-value pairs up to the 0x00 separator."""
    pairs: List[Tuple[bytes, bytes]] = []
    seen = set()
    while True:
        key_len, pos = read_compact_size(data, pos)
        if key_len == 0:
            return pairs, pos
        key, pos = read_bytes(data, pos, key_len)
        val_len, pos = read_compact_size(data, pos)
        val, pos = read_bytes(data, pos, val_len)
        if key in seen:
            raise PsbtDecodeError(f"Duplicate PSBT key {key.hex()}")
        seen.add(key)
        pairs.append((key, val))


def _serialize_keypaths(key_type: int, keypaths: KeyPathMap) -> bytes:
    return b"".join(
        _key_value(bytes([key_type]) + pubkey, origin.serialize())
        for pubkey, origin in sorted(keypaths.items())
    )


@dataclass(frozen=True)
class PartiallySignedTransaction:
    """
    BIP-174 version 0 PSBT, decoded.

    Only the fields the audit needs are typed; every other key-value pair
    is carried in ``unknown`` so that ``serialize()`` keeps the original
    size.
    """
    unsigned_tx: Transaction
    inputs: Tuple[PsbtInput, ...]
    outputs: Tuple[PsbtOutput, ...]
    global_unknown: RawPairs = ()

    # ---- parsing ------------------------------------------------------
    @classmethod
    def parse(cls, data: bytes) -> "PartiallySignedTransaction":
        if data[:5] != PSBT_MAGIC:
            raise PsbtDecodeError("Not a valid BIP-174 PSBT (bad magic)")

        pairs, pos = _read_map(data, 5)
        unsigned_tx: Optional[Transaction] = None
        global_unknown = []
        for key, val in pairs:
            if key == bytes([_PSBT_GLOBAL_UNSIGNED_TX]):
                unsigned_tx = Transaction.parse(val)
            else:
                global_unknown.append((key, val))
        if unsigned_tx is None:
            raise PsbtDecodeError("PSBT has no unsigned transaction")
        for i, txin in enumerate(unsigned_tx.inputs):
            if txin.script_sig or txin.witness:
                raise PsbtDecodeError(
                    f"Unsigned transaction input {i} has a non-empty scriptSig/witness"
                )

        inputs = []
        for _ in unsigned_tx.inputs:
            pairs, pos = _read_map(data, pos)
            inputs.append(cls._parse_input(pairs))

        outputs = []
        for _ in unsigned_tx.outputs:
            pairs, pos = _read_map(data, pos)
            outputs.append(cls._parse_output(pairs))

        if pos != len(data):
            raise PsbtDecodeError(f"{len(data) - pos} trailing bytes after PSBT")

        return cls(unsigned_tx, tuple(inputs), tuple(outputs), tuple(global_unknown))

    @staticmethod
    def _parse_input(pairs: List[Tuple[bytes, bytes]]) -> PsbtInput:
        fields: Dict[str, Any] = {"hd_keypaths": {}}
        unknown = []
        for key, val in pairs:
            key_type = key[0]
            if key_type == _PSBT_IN_NON_WITNESS_UTXO and len(key) == 1:
                fields["non_witness_utxo"] = Transaction.parse(val)
            elif key_type == _PSBT_IN_WITNESS_UTXO and len(key) == 1:
                txout, end = TxOut.parse(val)
                if end != len(val):
                    raise PsbtDecodeError("Trailing bytes in witness_utxo")
                fields["witness_utxo"] = txout
            elif key_type == _PSBT_IN_REDEEM_SCRIPT and len(key) == 1:
                fields["redeem_script"] = val
            elif key_type == _PSBT_IN_WITNESS_SCRIPT and len(key) == 1:
                fields["witness_script"] = val
            elif key_type == _PSBT_IN_BIP32_DERIVATION:
                fields["hd_keypaths"][key[1:]] = KeyOrigin.parse(val)
            else:
                unknown.append((key, val))
        return PsbtInput(unknown=tuple(unknown), **fields)

    @staticmethod
    def _parse_output(pairs: List[Tuple[bytes, bytes]]) -> PsbtOutput:
        fields: Dict[str, Any] = {"hd_keypaths": {}}
        unknown = []
        for key, val in pairs:
            key_type = key[0]
            if key_type == _PSBT_OUT_REDEEM_SCRIPT and len(key) == 1:
                fields["redeem_script"] = val
            elif key_type == _PSBT_OUT_WITNESS_SCRIPT and len(key) == 1:
                fields["witness_script"] = val
            elif key_type == _PSBT_OUT_BIP32_DERIVATION:
                fields["hd_keypaths"][key[1:]] = KeyOrigin.parse(val)
            else:
                unknown.append((key, val))
        return PsbtOutput(unknown=tuple(unknown), **fields)

    @classmethod
    def from_base64(cls, b64: str) -> "PartiallySignedTransaction":
        try:
            raw = b64decode(b64.strip(), validate=True)
        except binascii.Error as exc:
            raise PsbtDecodeError(f"Invalid base64 PSBT: {exc}") from exc
        return cls.parse(raw)

    # ---- serialisation ------------------------------------------------
    def serialize(self) -> bytes:
        buf = PSBT_MAGIC
        buf += _key_value(
            bytes([_PSBT_GLOBAL_UNSIGNED_TX]),
            self.unsigned_tx.serialize(include_witness=False),
        )
        buf += b"".join(_key_value(k, v) for k, v in self.global_unknown)
        buf += b"\x00"

        for inp in self.inputs:
            if inp.non_witness_utxo is not None:
                buf += _key_value(
                    bytes([_PSBT_IN_NON_WITNESS_UTXO]),
                    inp.non_witness_utxo.serialize(),
                )
            if inp.witness_utxo is not None:
                buf += _key_value(
                    bytes([_PSBT_IN_WITNESS_UTXO]), inp.witness_utxo.serialize(),
                )
            if inp.redeem_script is not None:
                buf += _key_value(bytes([_PSBT_IN_REDEEM_SCRIPT]), inp.redeem_script)
            if inp.witness_script is not None:
                buf += _key_value(bytes([_PSBT_IN_WITNESS_SCRIPT]), inp.witness_script)
            buf += _serialize_keypaths(_PSBT_IN_BIP32_DERIVATION, inp.hd_keypaths)
            buf += b"".join(_key_value(k, v) for k, v in inp.unknown)
            buf += b"\x00"

        for out in self.outputs:
            if out.redeem_script is not None:
                buf += _key_value(bytes([_PSBT_OUT_REDEEM_SCRIPT]), out.redeem_script)
            if out.witness_script is not None:
                buf += _key_value(bytes([_PSBT_OUT_WITNESS_SCRIPT]), out.witness_script)
            buf += _serialize_keypaths(_PSBT_OUT_BIP32_DERIVATION, out.hd_keypaths)
            buf += b"".join(_key_value(k, v) for k, v in out.unknown)
            buf += b"\x00"

        return buf


def read_psbt(psbt_file: str) -> PartiallySignedTransaction:
    """
    Load a PSBT from disk.

    Accepts raw BIP-174 bytes, base64 text, or a JSON object whose
    ``psbt`` field holds the base64 text.
    """
    raw = Path(psbt_file).read_bytes()
    if raw.startswith(PSBT_MAGIC):
        return PartiallySignedTransaction.parse(raw)

    try:
        text = raw.decode().strip()
    except UnicodeDecodeError as exc:
        raise PsbtDecodeError(f"{psbt_file}: neither binary nor text PSBT") from exc

    if text.startswith("{"):
        try:
            b64 = json.loads(text)["psbt"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise PsbtDecodeError(f"{psbt_file}: JSON has no 'psbt' field") from exc
        if not isinstance(b64, str):
            raise PsbtDecodeError(f"{psbt_file}: 'psbt' field is not a base64 string")
        return PartiallySignedTransaction.from_base64(b64)
    return PartiallySignedTransaction.from_base64(text)


# ============================================================
# WALLETS
# ============================================================

@dataclass(frozen=True)
class WalletRecord:
    name: str
    fingerprints: FrozenSet[bytes]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WalletRecord":
        fingerprints = frozenset(bytes.fromhex(f) for f in d["fingerprints"])
        for fp in fingerprints:
            if len(fp) != 4:
                raise ValueError(f"fingerprint {fp.hex()} is not 4 bytes")
        return cls(name=str(d["name"]), fingerprints=fingerprints)


def load_wallets(filepath: str) -> List[WalletRecord]:
    """JSON list of ``{"name", "fingerprints"}`` objects, or ``{"wallets": [...]}``."""
    text = Path(filepath).read_text()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            data = data["wallets"]
        wallets = [WalletRecord.from_dict(d) for d in data]
    except json.JSONDecodeError as exc:
        raise InvalidWalletFile(filepath, f"not JSON: {exc.msg}") from exc
    except KeyError as exc:
        raise InvalidWalletFile(filepath, f"missing field {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise InvalidWalletFile(filepath, str(exc)) from exc
    log.info("Loaded %d wallets <- %s", len(wallets), filepath)
    return wallets


# ============================================================
# SPENT OUTPUTS
# ============================================================

def resolve_previous_outputs(psbt: PartiallySignedTransaction) -> List[TxOut]:
    """The output each input spends, in input order."""
    previous_outputs: List[TxOut] = []
    for i, (txin, inp) in enumerate(zip(psbt.unsigned_tx.inputs, psbt.inputs)):
        has_full = inp.non_witness_utxo is not None
        has_single = inp.witness_utxo is not None
        if has_full == has_single:
            raise AmbiguousOrMissingUtxo(i)

        if has_full:
            outpoint = txin.previous_output
            prev_tx = inp.non_witness_utxo
            if prev_tx.txid != outpoint.txid:
                raise OutpointMismatch(i, outpoint.txid, prev_tx.txid)
            if outpoint.vout >= len(prev_tx.outputs):
                raise OutputIndexOutOfRange(i, outpoint.vout, len(prev_tx.outputs))
            previous_outputs.append(prev_tx.outputs[outpoint.vout])
        else:
            previous_outputs.append(inp.witness_utxo)
    return previous_outputs


# ============================================================
# WALLET ATTRIBUTION
# ============================================================

def which_wallet(keypaths: KeyPathMap, wallets: Sequence[WalletRecord]) -> List[str]:
    """Names of the wallets owning every fingerprint in *keypaths*."""
    result = []
    for wallet in wallets:
        if keypaths and all(
            origin.fingerprint in wallet.fingerprints
            for origin in keypaths.values()
        ):
            result.append(wallet.name)
    return result


def derivation_paths(keypaths: KeyPathMap) -> str:
    return ", ".join(sorted({origin.path_str for origin in keypaths.values()}))


# ============================================================
# PRIVACY HEURISTICS
# ============================================================

PRIVACY_SCRIPT_TYPES = "Privacy: outputs have different script types https://en.bitcoin.it/wiki/Privacy#Sending_to_a_different_script_type"
PRIVACY_ROUND_NUMBERS = "Privacy: outputs have different precision https://en.bitcoin.it/wiki/Privacy#Round_numbers"
PRIVACY_UNNECESSARY_INPUT = "Privacy: smallest output is smaller then smallest input https://en.bitcoin.it/wiki/Privacy#Unnecessary_input_heuristic"
PRIVACY_ADDRESS_REUSE = "Privacy: address reuse https://en.bitcoin.it/wiki/Privacy#Address_reuse"

# Priority order: first match wins
SCRIPT_TYPES: Tuple[Tuple[str, Callable[[bytes], bool]], ...] = (
    ("p2pk", is_p2pk),
    ("p2pkh", is_p2pkh),
    ("p2sh", is_p2sh),
    ("p2wpkh", is_p2wpkh),
    ("p2wsh", is_p2wsh),
)


def script_type(script: bytes) -> Optional[int]:
    """Index into ``SCRIPT_TYPES`` of the first matching shape, else None."""
    for index, (_, matches) in enumerate(SCRIPT_TYPES):
        if matches(script):
            return index
    return None


def biggest_dividing_pow(num: int) -> int:
    """Exponent of the largest power of ten dividing *num* (0 for 0)."""
    if num == 0:
        return 0
    count = 0
    while num % 10 == 0:
        num //= 10
        count += 1
    return count


def privacy_findings(tx: Transaction, previous_outputs: Sequence[TxOut]) -> List[str]:
    info: List[str] = []

    types = {script_type(o.script_pubkey) for o in tx.outputs}
    types.discard(None)
    if len(types) > 1:
        info.append(PRIVACY_SCRIPT_TYPES)

    divs = [biggest_dividing_pow(o.value) for o in tx.outputs]
    if divs and max(divs) - min(divs) >= 3:
        info.append(PRIVACY_ROUND_NUMBERS)

    if len(previous_outputs) > 1:
        smallest_input = min(o.value for o in previous_outputs)
        if any(o.value < smallest_input for o in tx.outputs):
            info.append(PRIVACY_UNNECESSARY_INPUT)

    input_scripts = {o.script_pubkey for o in previous_outputs}
    if any(o.script_pubkey in input_scripts for o in tx.outputs):
        info.append(PRIVACY_ADDRESS_REUSE)

    return info


# ============================================================
# WEIGHT / FEE
# ============================================================

SIGNATURE_SIZE = 72     # DER signature + sighash byte, typical upper case
PUBKEY_SIZE = 33
SCHNORR_SIGNATURE_SIZE = 64


def expected_signatures(script: bytes) -> Optional[int]:
    """Signatures needed by a single-key or bare-multisig script."""
    if len(script) == 35 and script[0] == 0x21 and script[34] == OP_CHECKSIG:
        return 1
    if script and script[-1] == OP_CHECKMULTISIG and OP_1 <= script[0] <= OP_16:
        return script[0] - OP_1 + 1
    return None


def _push_size(n: int) -> int:
    """Bytes taken in a scriptSig by a push of *n* bytes."""
    if n < 0x4c:
        return 1 + n
    if n <= 0xff:
        return 2 + n
    return 3 + n


def _witness_size(items: Sequence[int]) -> int:
    return len(compact_size(len(items))) + sum(
        len(compact_size(n)) + n for n in items
    )


def _spending_data(
    index: int, inp: PsbtInput, spent: bytes,
) -> Tuple[int, Optional[Sequence[int]]]:
    """(scriptSig bytes, witness item sizes or None) for one input."""
    redeem, witness_script = inp.redeem_script, inp.witness_script

    if witness_script is not None:
        sigs = expected_signatures(witness_script)
        if sigs is None:
            raise UnestimableInput(index)
        items = [SIGNATURE_SIZE] * sigs + [len(witness_script)]
        if witness_script[-1] == OP_CHECKMULTISIG:
            items.insert(0, 0)   # CHECKMULTISIG dummy element
        script_sig = _push_size(len(redeem)) if redeem is not None else 0
        return script_sig, items

    if redeem is not None:
        if is_p2wpkh(redeem):
            return _push_size(len(redeem)), [SIGNATURE_SIZE, PUBKEY_SIZE]
        sigs = expected_signatures(redeem)
        if sigs is None:
            raise UnestimableInput(index)
        dummy = 1 if redeem[-1] == OP_CHECKMULTISIG else 0
        return dummy + _push_size(SIGNATURE_SIZE) * sigs + _push_size(len(redeem)), None

    if is_p2wpkh(spent):
        return 0, [SIGNATURE_SIZE, PUBKEY_SIZE]
    if is_p2pkh(spent):
        return _push_size(SIGNATURE_SIZE) + _push_size(PUBKEY_SIZE), None
    if is_p2pk(spent):
        return _push_size(SIGNATURE_SIZE), None
    wp = witness_program(spent)
    if wp is not None and wp[0] == 1 and len(wp[1]) == 32:
        return 0, [SCHNORR_SIGNATURE_SIZE]
    raise UnestimableInput(index)


def estimate_final_weight(
    psbt: PartiallySignedTransaction,
    previous_outputs: Optional[Sequence[TxOut]] = None,
) -> int:
    """
    Projected weight of the fully signed transaction.

    Adds to the unsigned weight each input's scriptSig (x4) and witness
    (x1), assuming ``SIGNATURE_SIZE`` bytes per ECDSA signature.
    """
    if previous_outputs is None:
        previous_outputs = resolve_previous_outputs(psbt)

    tx = psbt.unsigned_tx
    weight = tx.weight
    witnesses: List[Optional[Sequence[int]]] = []
    for i, inp in enumerate(psbt.inputs):
        script_sig, witness = _spending_data(i, inp, previous_outputs[i].script_pubkey)
        # the unsigned tx already carries a one-byte empty scriptSig length
        weight += (len(compact_size(script_sig)) - 1 + script_sig) * 4
        witnesses.append(witness)

    if any(w is not None for w in witnesses):
        weight += 2   # segwit marker + flag
        weight += sum(_witness_size(w) if w is not None else 1 for w in witnesses)
    return weight


@dataclass(frozen=True)
class Size:
    estimated: int
    unsigned: int
    psbt: int


@dataclass(frozen=True)
class Fee:
    absolute: int
    absolute_fmt: str
    rate: float


@dataclass(frozen=True)
class FeeReport:
    fee: Fee
    size: Size


def estimate_fee(
    input_values: Sequence[int],
    output_values: Sequence[int],
    unsigned_weight: int,
    estimated_weight: int,
    psbt_size: int = 0,
) -> FeeReport:
    """
    Absolute fee and rate in sat/vB over the estimated signed size.

    ``estimated_weight`` must be at least 4 weight units (one vbyte).
    """
    if estimated_weight < 4:
        raise ValueError(f"estimated weight {estimated_weight} is below one vbyte")
    total_in = sum(input_values)
    total_out = sum(output_values)
    fee = total_in - total_out
    if fee < 0:
        raise NegativeFee(total_in, total_out)

    tx_vbytes = unsigned_weight // 4
    estimated_tx_vbytes = estimated_weight // 4
    return FeeReport(
        fee=Fee(
            absolute=fee,
            absolute_fmt=format_btc(fee),
            rate=fee / estimated_tx_vbytes,
        ),
        size=Size(estimated=estimated_tx_vbytes, unsigned=tx_vbytes, psbt=psbt_size),
    )


# ============================================================
# REPORT
# ============================================================

@dataclass(frozen=True)
class TxInOut:
    outpoint: Optional[str]
    address: Optional[str]
    value: str
    path: str
    wallet: str


@dataclass(frozen=True)
class PsbtPrettyPrint:
    inputs: Tuple[TxInOut, ...]
    outputs: Tuple[TxInOut, ...]
    balances: str
    info: Tuple[str, ...]
    size: Size
    fee: Fee

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["inputs"] = list(d["inputs"])
        d["outputs"] = list(d["outputs"])
        d["info"] = list(d["info"])
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def pretty_print(
    psbt: PartiallySignedTransaction,
    network: str,
    wallets: Sequence[WalletRecord],
) -> PsbtPrettyPrint:
    """Assemble the audit report. Raises on the first inconsistency found."""
    wallets = tuple(wallets)
    tx = psbt.unsigned_tx
    previous_outputs = resolve_previous_outputs(psbt)
    balances: Dict[str, int] = {}

    inputs = []
    for i, txin in enumerate(tx.inputs):
        keypaths = psbt.inputs[i].hd_keypaths
        names = which_wallet(keypaths, wallets)
        value = previous_outputs[i].value
        inputs.append(TxInOut(
            outpoint=str(txin.previous_output),
            address=None,
            value=format_btc(value),
            path=derivation_paths(keypaths),
            wallet=", ".join(names),
        ))
        for name in names:
            balances[name] = balances.get(name, 0) - value

    outputs = []
    for i, txout in enumerate(tx.outputs):
        address = address_from_script(txout.script_pubkey, network)
        if address is None:
            raise UnclassifiableOutputScript(i, txout.script_pubkey.hex())
        keypaths = psbt.outputs[i].hd_keypaths
        names = which_wallet(keypaths, wallets)
        outputs.append(TxInOut(
            outpoint=None,
            address=address,
            value=format_btc(txout.value),
            path=derivation_paths(keypaths),
            wallet=", ".join(names),
        ))
        for name in names:
            balances[name] = balances.get(name, 0) + txout.value

    fees = estimate_fee(
        [o.value for o in previous_outputs],
        [o.value for o in tx.outputs],
        tx.weight,
        estimate_final_weight(psbt, previous_outputs),
        len(psbt.serialize()),
    )

    report = PsbtPrettyPrint(
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        balances="\n".join(
            f"{name}: {format_btc(balances[name])}" for name in sorted(balances)
        ),
        info=tuple(privacy_findings(tx, previous_outputs)),
        size=fees.size,
        fee=fees.fee,
    )
    log.info(
        "PSBT report: %d inputs, %d outputs, fee=%d sats, %d findings",
        len(inputs), len(outputs), fees.fee.absolute, len(report.info),
    )
    return report


def start(
    psbt_file: str,
    network: str,
    wallets_file: Optional[str] = None,
) -> PsbtPrettyPrint:
    """Read the PSBT (and optional wallet list) from disk and report on it."""
    psbt = read_psbt(psbt_file)
    wallets = load_wallets(wallets_file) if wallets_file else []
    return pretty_print(psbt, network, wallets)
