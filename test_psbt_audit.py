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
import json
from base64 import b64encode

import pytest
from psbt_audit import *
from bitcoin_protocol import (
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    address_from_script,
    compact_size,
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

H = 0x80000000
FP_A = bytes.fromhex("d34db33f")
FP_B = bytes.fromhex("0badf00d")
FP_C = bytes.fromhex("12345678")


def _p2wpkh(n: int) -> bytes:
    return b"\x00\x14" + bytes([n]) * 20


def _p2pkh(n: int) -> bytes:
    return b"\x76\xa9\x14" + bytes([n]) * 20 + b"\x88\xac"


def _p2sh(n: int) -> bytes:
    return b"\xa9\x14" + bytes([n]) * 20 + b"\x87"


def _p2wsh(n: int) -> bytes:
    return b"\x00\x20" + bytes([n]) * 32


def _pubkey(n: int) -> bytes:
    return b"\x02" + bytes([n]) * 32


def _multisig(m: int, n: int) -> bytes:
    keys = b"".join(b"\x21" + _pubkey(i + 1) for i in range(n))
    return bytes([0x50 + m]) + keys + bytes([0x50 + n, 0xae])


def _keypaths(*origins) -> dict:
    """(n, fingerprint, path) triples -> pubkey map."""
    return {_pubkey(n): KeyOrigin(fp, tuple(path)) for n, fp, path in origins}


def _psbt(
    spent,
    outputs,
    input_keypaths=None,
    output_keypaths=None,
    full_prev=False,
    **input_fields,
) -> PartiallySignedTransaction:
    """Build a PSBT spending *spent* (TxOuts) into *outputs* (TxOuts)."""
    txins, inputs = [], []
    for i, prev_out in enumerate(spent):
        keypaths = (input_keypaths or {}).get(i, {})
        if full_prev:
            prev = Transaction(
                inputs=(TxIn(OutPoint(f"{0x80 + i:02x}" * 32, 0)),),
                outputs=(TxOut(1, b"\x51"), prev_out),
            )
            txins.append(TxIn(OutPoint(prev.txid, 1)))
            inputs.append(PsbtInput(non_witness_utxo=prev, hd_keypaths=keypaths,
                                    **input_fields))
        else:
            txins.append(TxIn(OutPoint(f"{i + 1:02x}" * 32, i)))
            inputs.append(PsbtInput(witness_utxo=prev_out, hd_keypaths=keypaths,
                                    **input_fields))
    outs = [
        PsbtOutput(hd_keypaths=(output_keypaths or {}).get(i, {}))
        for i in range(len(outputs))
    ]
    tx = Transaction(version=2, inputs=tuple(txins), outputs=tuple(outputs))
    return PartiallySignedTransaction(tx, tuple(inputs), tuple(outs))


class TestPsbtCodec:
    """BIP-174 decoding and re-encoding."""

    def _sample(self) -> PartiallySignedTransaction:
        return _psbt(
            [TxOut(200_000, _p2wpkh(1)), TxOut(300_000, _p2pkh(2))],
            [TxOut(150_000, _p2wpkh(9)), TxOut(340_000, _p2wpkh(8))],
            input_keypaths={0: _keypaths((1, FP_A, [84 | H, 0 | H, 0 | H, 0, 3]))},
            output_keypaths={1: _keypaths((8, FP_A, [84 | H, 0 | H, 0 | H, 1, 0]))},
        )

    def test_serialize_parse_roundtrip(self):
        psbt = self._sample()
        assert PartiallySignedTransaction.parse(psbt.serialize()) == psbt

    def test_full_previous_tx_roundtrip(self):
        psbt = _psbt([TxOut(10_000, _p2pkh(3))], [TxOut(9_000, _p2wpkh(4))], full_prev=True)
        parsed = PartiallySignedTransaction.parse(psbt.serialize())
        assert parsed.inputs[0].non_witness_utxo == psbt.inputs[0].non_witness_utxo

    def test_unknown_pairs_are_preserved(self):
        psbt = self._sample()
        raw = bytearray(psbt.serialize())
        # proprietary global key inserted just before the global separator
        extra = b"\x03\xfc\x01\x02\x01\x07"
        end = 5 + len(_global_tx_pair(psbt))
        raw[end:end] = extra
        parsed = PartiallySignedTransaction.parse(bytes(raw))
        assert parsed.global_unknown == ((b"\xfc\x01\x02", b"\x07"),)
        assert parsed.serialize() == bytes(raw)

    def test_bad_magic(self):
        with pytest.raises(PsbtDecodeError, match="bad magic"):
            PartiallySignedTransaction.parse(b"psbx\xff\x00")

    def test_missing_unsigned_tx(self):
        with pytest.raises(PsbtDecodeError, match="no unsigned transaction"):
            PartiallySignedTransaction.parse(b"psbt\xff\x00")

    def test_trailing_bytes(self):
        with pytest.raises(PsbtDecodeError, match="trailing"):
            PartiallySignedTransaction.parse(self._sample().serialize() + b"\x00")

    def test_truncated(self):
        with pytest.raises(PsbtDecodeError):
            PartiallySignedTransaction.parse(self._sample().serialize()[:-2])

    def test_duplicate_key_rejected(self):
        psbt = _psbt([TxOut(1_000, _p2wpkh(1))], [TxOut(900, _p2wpkh(2))])
        raw = psbt.serialize()
        pair = b"\x01\x04\x01\x00"   # redeem script -> one byte
        # first input map starts right after the global separator
        start = 5 + len(_global_tx_pair(psbt)) + 1
        dup = raw[:start] + pair + pair + raw[start:]
        with pytest.raises(PsbtDecodeError, match="Duplicate"):
            PartiallySignedTransaction.parse(dup)

    def test_signed_unsigned_tx_rejected(self):
        tx = Transaction(inputs=(TxIn(OutPoint("11" * 32, 0), b"\x00"),),
                         outputs=(TxOut(1, _p2wpkh(1)),))
        raw = (b"psbt\xff" + b"\x01\x00" + _prefixed(tx.serialize())
               + b"\x00" + b"\x00" + b"\x00")
        with pytest.raises(PsbtDecodeError, match="non-empty scriptSig"):
            PartiallySignedTransaction.parse(raw)

    def test_bad_derivation_value(self):
        with pytest.raises(PsbtDecodeError, match="invalid length 6"):
            KeyOrigin.parse(b"\x00" * 6)

    def test_key_origin_path_str(self):
        origin = KeyOrigin(FP_A, (48 | H, 0 | H, 0 | H, 2 | H, 0, 7))
        assert origin.path_str == "m/48'/0'/0'/2'/0/7"

    def test_key_origin_master(self):
        assert KeyOrigin(FP_A, ()).path_str == "m"


def _prefixed(data: bytes) -> bytes:
    return compact_size(len(data)) + data


def _global_tx_pair(psbt: PartiallySignedTransaction) -> bytes:
    """The serialized global unsigned-tx key-value pair."""
    return b"\x01\x00" + _prefixed(psbt.unsigned_tx.serialize(include_witness=False))


class TestReadPsbt:
    def _psbt(self) -> PartiallySignedTransaction:
        return _psbt([TxOut(50_000, _p2wpkh(1))], [TxOut(40_000, _p2wpkh(2))])

    def test_binary_file(self, tmp_path):
        path = tmp_path / "tx.psbt"
        path.write_bytes(self._psbt().serialize())
        assert read_psbt(str(path)) == self._psbt()

    def test_base64_file(self, tmp_path):
        path = tmp_path / "tx.txt"
        path.write_text(b64encode(self._psbt().serialize()).decode() + "\n")
        assert read_psbt(str(path)) == self._psbt()

    def test_json_file(self, tmp_path):
        path = tmp_path / "tx.json"
        b64 = b64encode(self._psbt().serialize()).decode()
        path.write_text(json.dumps({"name": "tx", "psbt": b64}))
        assert read_psbt(str(path)) == self._psbt()

    def test_json_without_psbt_field(self, tmp_path):
        path = tmp_path / "tx.json"
        path.write_text(json.dumps({"name": "tx"}))
        with pytest.raises(PsbtDecodeError, match="no 'psbt' field"):
            read_psbt(str(path))

    @pytest.mark.parametrize("field", [5, None, ["cHNidP8="]])
    def test_json_psbt_field_not_a_string(self, tmp_path, field):
        path = tmp_path / "tx.json"
        path.write_text(json.dumps({"psbt": field}))
        with pytest.raises(PsbtDecodeError, match="not a base64 string"):
            read_psbt(str(path))

    def test_garbage_text(self, tmp_path):
        path = tmp_path / "tx.txt"
        path.write_text("not a psbt at all!")
        with pytest.raises(PsbtDecodeError, match="Invalid base64"):
            read_psbt(str(path))


class TestResolvePreviousOutputs:
    def test_witness_utxo_used_directly(self):
        spent = [TxOut(1_000, _p2wpkh(1)), TxOut(2_000, _p2wpkh(2))]
        psbt = _psbt(spent, [TxOut(2_500, _p2wpkh(3))])
        assert resolve_previous_outputs(psbt) == spent

    def test_non_witness_utxo_indexed_by_vout(self):
        spent = [TxOut(7_000, _p2pkh(5))]
        psbt = _psbt(spent, [TxOut(6_000, _p2wpkh(3))], full_prev=True)
        assert resolve_previous_outputs(psbt) == spent

    def test_txid_mismatch(self):
        psbt = _psbt([TxOut(7_000, _p2pkh(5))], [TxOut(6_000, _p2wpkh(3))], full_prev=True)
        wrong = Transaction(
            inputs=(TxIn(OutPoint("ab" * 32, 0)),),
            outputs=psbt.unsigned_tx.outputs,
            version=psbt.unsigned_tx.version,
        )
        tampered = PartiallySignedTransaction(wrong, psbt.inputs, psbt.outputs)
        with pytest.raises(OutpointMismatch) as exc_info:
            resolve_previous_outputs(tampered)
        assert exc_info.value.index == 0
        assert exc_info.value.expected == "ab" * 32
        assert exc_info.value.got == psbt.inputs[0].non_witness_utxo.txid

    def test_vout_out_of_range(self):
        psbt = _psbt([TxOut(7_000, _p2pkh(5))], [TxOut(6_000, _p2wpkh(3))], full_prev=True)
        prev_txid = psbt.inputs[0].non_witness_utxo.txid
        bad = Transaction(
            inputs=(TxIn(OutPoint(prev_txid, 5)),),
            outputs=psbt.unsigned_tx.outputs,
        )
        with pytest.raises(OutputIndexOutOfRange) as exc_info:
            resolve_previous_outputs(PartiallySignedTransaction(bad, psbt.inputs, psbt.outputs))
        assert (exc_info.value.vout, exc_info.value.available) == (5, 2)

    def test_neither_utxo(self):
        psbt = _psbt([TxOut(1_000, _p2wpkh(1))], [TxOut(900, _p2wpkh(2))])
        empty = PartiallySignedTransaction(psbt.unsigned_tx, (PsbtInput(),), psbt.outputs)
        with pytest.raises(AmbiguousOrMissingUtxo, match="Input 0"):
            resolve_previous_outputs(empty)

    def test_both_utxos(self):
        full = _psbt([TxOut(1_000, _p2wpkh(1))], [TxOut(900, _p2wpkh(2))], full_prev=True)
        both = PsbtInput(
            non_witness_utxo=full.inputs[0].non_witness_utxo,
            witness_utxo=TxOut(1_000, _p2wpkh(1)),
        )
        psbt = PartiallySignedTransaction(full.unsigned_tx, (both,), full.outputs)
        with pytest.raises(AmbiguousOrMissingUtxo):
            resolve_previous_outputs(psbt)


class TestWalletAttribution:
    WALLETS = (
        WalletRecord("solo", frozenset({FP_A})),
        WalletRecord("multi", frozenset({FP_A, FP_B, FP_C})),
        WalletRecord("other", frozenset({FP_C})),
    )

    def test_empty_keypaths_match_nothing(self):
        assert which_wallet({}, self.WALLETS) == []

    def test_single_fingerprint_matches_every_superset(self):
        keypaths = _keypaths((1, FP_A, [0]))
        assert which_wallet(keypaths, self.WALLETS) == ["solo", "multi"]

    def test_all_fingerprints_must_belong(self):
        keypaths = _keypaths((1, FP_A, [0]), (2, FP_B, [0]))
        assert which_wallet(keypaths, self.WALLETS) == ["multi"]

    def test_foreign_fingerprint_excludes(self):
        keypaths = _keypaths((1, FP_A, [0]), (2, bytes(4), [0]))
        assert which_wallet(keypaths, self.WALLETS) == []

    def test_order_follows_wallet_list(self):
        keypaths = _keypaths((1, FP_A, [0]))
        assert which_wallet(keypaths, self.WALLETS[::-1]) == ["multi", "solo"]

    def test_wallet_from_dict(self):
        record = WalletRecord.from_dict({"name": "w", "fingerprints": ["d34db33f"]})
        assert record == WalletRecord("w", frozenset({FP_A}))

    def test_load_wallets_list_and_object(self, tmp_path):
        entries = [{"name": "w1", "fingerprints": ["d34db33f", "0badf00d"]}]
        p1 = tmp_path / "list.json"
        p1.write_text(json.dumps(entries))
        p2 = tmp_path / "obj.json"
        p2.write_text(json.dumps({"wallets": entries}))
        expected = [WalletRecord("w1", frozenset({FP_A, FP_B}))]
        assert load_wallets(str(p1)) == expected
        assert load_wallets(str(p2)) == expected

    @pytest.mark.parametrize("content,reason", [
        ("not json", "not JSON"),
        ('[{"name": "a"}]', "missing field 'fingerprints'"),
        ('{"name": "a"}', "missing field 'wallets'"),
        ('[{"name": "a", "fingerprints": ["zz"]}]', "non-hexadecimal"),
        ('[{"name": "a", "fingerprints": ["d34d"]}]', "not 4 bytes"),
        ("5", "not iterable"),
    ])
    def test_load_wallets_rejects_malformed_file(self, tmp_path, content, reason):
        path = tmp_path / "wallets.json"
        path.write_text(content)
        with pytest.raises(InvalidWalletFile, match=reason) as exc_info:
            load_wallets(str(path))
        assert exc_info.value.path == str(path)


class TestDerivationPaths:
    def test_sorted_and_deduplicated(self):
        keypaths = _keypaths(
            (1, FP_A, [84 | H, 0 | H, 0 | H, 0, 1]),
            (2, FP_B, [48 | H, 0 | H, 0 | H, 2 | H, 0, 1]),
            (3, FP_C, [84 | H, 0 | H, 0 | H, 0, 1]),
        )
        assert derivation_paths(keypaths) == "m/48'/0'/0'/2'/0/1, m/84'/0'/0'/0/1"

    def test_empty(self):
        assert derivation_paths({}) == ""


class TestScriptType:
    """Priority-ordered script shape classification."""

    @pytest.mark.parametrize("hex_script,expected", [
        ("21021aeaf2f8638a129a3156fbe7e5ef635226b0bafd495ff03afe2c843d7e3a4b51ac", 0),
        ("76a91402306a7c23f3e8010de41e9e591348bb83f11daa88ac", 1),
        ("a914acc91e6fef5c7f24e5c8b3f11a664aa8f1352ffd87", 2),
        ("00140c3e2a4e0911aac188fe1cba6ef3d808326e6d0a", 3),
        ("00201775ead41acefa14d2d534d6272da610cc35855d0de4cab0f5c1a3f894921989", 4),
        ("5120" + "07" * 32, None),
        ("6a0474657374", None),
    ])
    def test_classification(self, hex_script, expected):
        assert script_type(bytes.fromhex(hex_script)) == expected

    def test_priority_order(self):
        assert [name for name, _ in SCRIPT_TYPES] == [
            "p2pk", "p2pkh", "p2sh", "p2wpkh", "p2wsh",
        ]


class TestBiggestDividingPow:
    @pytest.mark.parametrize("value,expected", [
        (3, 0), (10, 1), (11, 0), (110, 1), (1100, 2), (1100030, 1),
        (100_000_000, 8),
    ])
    def test_values(self, value, expected):
        assert biggest_dividing_pow(value) == expected

    def test_zero(self):
        assert biggest_dividing_pow(0) == 0


class TestPrivacyFindings:
    def _findings(self, spent, outputs):
        psbt = _psbt(spent, outputs)
        return privacy_findings(psbt.unsigned_tx, resolve_previous_outputs(psbt))

    def test_clean_transaction(self):
        info = self._findings(
            [TxOut(1_000_000, _p2wpkh(1))],
            [TxOut(500_001, _p2wpkh(2)), TxOut(499_011, _p2wpkh(3))],
        )
        assert info == []

    def test_all_four_in_fixed_order(self):
        info = self._findings(
            [TxOut(200_000, _p2wpkh(1)), TxOut(300_000, _p2wpkh(2))],
            [TxOut(100_000, _p2pkh(9)), TxOut(123_457, _p2wpkh(1))],
        )
        assert info == [
            PRIVACY_SCRIPT_TYPES,
            PRIVACY_ROUND_NUMBERS,
            PRIVACY_UNNECESSARY_INPUT,
            PRIVACY_ADDRESS_REUSE,
        ]

    def test_exact_wording(self):
        assert PRIVACY_SCRIPT_TYPES == "Privacy: outputs have different script types https://en.bitcoin.it/wiki/Privacy#Sending_to_a_different_script_type"
        assert PRIVACY_ROUND_NUMBERS == "Privacy: outputs have different precision https://en.bitcoin.it/wiki/Privacy#Round_numbers"
        assert PRIVACY_UNNECESSARY_INPUT == "Privacy: smallest output is smaller then smallest input https://en.bitcoin.it/wiki/Privacy#Unnecessary_input_heuristic"
        assert PRIVACY_ADDRESS_REUSE == "Privacy: address reuse https://en.bitcoin.it/wiki/Privacy#Address_reuse"

    def test_unclassified_outputs_do_not_count(self):
        info = self._findings(
            [TxOut(1_000_000, _p2wpkh(1))],
            [TxOut(500_001, _p2wpkh(2)), TxOut(499_011, b"\x51\x20" + b"\x07" * 32)],
        )
        assert PRIVACY_SCRIPT_TYPES not in info

    def test_precision_gap_of_two_is_fine(self):
        info = self._findings(
            [TxOut(1_000_000, _p2wpkh(1))],
            [TxOut(500_100, _p2wpkh(2)), TxOut(499_001, _p2wpkh(3))],
        )
        assert PRIVACY_ROUND_NUMBERS not in info

    def test_unnecessary_input_needs_two_inputs(self):
        info = self._findings(
            [TxOut(1_000_000, _p2wpkh(1))],
            [TxOut(1_001, _p2wpkh(2)), TxOut(998_001, _p2wpkh(3))],
        )
        assert PRIVACY_UNNECESSARY_INPUT not in info

    def test_unnecessary_input_not_flagged_when_outputs_large(self):
        info = self._findings(
            [TxOut(200_001, _p2wpkh(1)), TxOut(300_001, _p2wpkh(2))],
            [TxOut(490_001, _p2wpkh(3))],
        )
        assert PRIVACY_UNNECESSARY_INPUT not in info

    def test_reuse_via_full_previous_tx(self):
        psbt = _psbt(
            [TxOut(50_001, _p2pkh(4))],
            [TxOut(40_001, _p2pkh(4))],
            full_prev=True,
        )
        info = privacy_findings(psbt.unsigned_tx, resolve_previous_outputs(psbt))
        assert info == [PRIVACY_ADDRESS_REUSE]


class TestEstimateFee:
    def test_fee_and_sizes(self):
        report = estimate_fee([300_000, 200_000], [450_000, 40_000], 803, 1_450, 612)
        assert report.fee.absolute == 10_000
        assert report.fee.absolute_fmt == "0.00010000 BTC"
        assert report.size == Size(estimated=362, unsigned=200, psbt=612)
        assert report.fee.rate == pytest.approx(10_000 / 362)

    def test_zero_fee(self):
        assert estimate_fee([1_000], [1_000], 400, 600).fee.absolute == 0

    def test_negative_fee(self):
        with pytest.raises(NegativeFee) as exc_info:
            estimate_fee([1_000], [600, 500], 400, 600)
        assert (exc_info.value.inputs, exc_info.value.outputs) == (1_000, 1_100)

    @pytest.mark.parametrize("weight", [0, 3])
    def test_weight_below_one_vbyte(self, weight):
        with pytest.raises(ValueError, match="below one vbyte"):
            estimate_fee([1_000], [900], 400, weight)


class TestEstimateFinalWeight:
    def _weight(self, psbt):
        return 4 * len(psbt.unsigned_tx.serialize())

    def test_p2wpkh(self):
        psbt = _psbt([TxOut(10_000, _p2wpkh(1))], [TxOut(9_000, _p2wpkh(2))])
        # marker/flag + [count, sig, pubkey]
        assert estimate_final_weight(psbt) == self._weight(psbt) + 2 + 1 + 73 + 34

    def test_p2pkh(self):
        psbt = _psbt([TxOut(10_000, _p2pkh(1))], [TxOut(9_000, _p2wpkh(2))])
        assert estimate_final_weight(psbt) == self._weight(psbt) + (73 + 34) * 4

    def test_p2wsh_multisig(self):
        script = _multisig(2, 3)
        assert len(script) == 105
        psbt = _psbt(
            [TxOut(10_000, _p2wsh(1))], [TxOut(9_000, _p2wpkh(2))],
            witness_script=script,
        )
        witness = 1 + 1 + 73 + 73 + (1 + 105)
        assert estimate_final_weight(psbt) == self._weight(psbt) + 2 + witness

    def test_legacy_p2sh_multisig(self):
        script = _multisig(1, 2)
        psbt = _psbt(
            [TxOut(10_000, _p2sh(1))], [TxOut(9_000, _p2wpkh(2))],
            redeem_script=script,
        )
        script_sig = 1 + 73 + (1 + len(script))
        assert estimate_final_weight(psbt) == self._weight(psbt) + script_sig * 4

    def test_nested_p2wpkh(self):
        redeem = _p2wpkh(7)
        psbt = _psbt(
            [TxOut(10_000, _p2sh(1))], [TxOut(9_000, _p2wpkh(2))],
            redeem_script=redeem,
        )
        expected = self._weight(psbt) + (1 + 22) * 4 + 2 + 1 + 73 + 34
        assert estimate_final_weight(psbt) == expected

    def test_mixed_legacy_and_segwit_inputs(self):
        psbt = _psbt(
            [TxOut(10_000, _p2pkh(1)), TxOut(10_000, _p2wpkh(2))],
            [TxOut(19_000, _p2wpkh(3))],
        )
        # the legacy input still carries an empty witness stack
        expected = self._weight(psbt) + (73 + 34) * 4 + 2 + 1 + (1 + 73 + 34)
        assert estimate_final_weight(psbt) == expected

    def test_p2sh_without_redeem_script(self):
        psbt = _psbt([TxOut(10_000, _p2sh(1))], [TxOut(9_000, _p2wpkh(2))])
        with pytest.raises(UnestimableInput, match="Input 0"):
            estimate_final_weight(psbt)

    def test_estimate_exceeds_unsigned(self):
        psbt = _psbt([TxOut(10_000, _p2wpkh(1))], [TxOut(9_000, _p2wpkh(2))])
        assert estimate_final_weight(psbt) > psbt.unsigned_tx.weight


class TestPrettyPrint:
    """End-to-end report assembly."""

    WALLETS = [
        WalletRecord("zeta", frozenset({FP_A})),
        WalletRecord("alpha", frozenset({FP_A, FP_B})),
    ]

    def _psbt(self) -> PartiallySignedTransaction:
        return _psbt(
            [TxOut(200_000, _p2wpkh(1)), TxOut(300_000, _p2wpkh(2))],
            [TxOut(250_000, _p2wpkh(9)), TxOut(240_000, _p2wpkh(7))],
            input_keypaths={
                0: _keypaths((1, FP_A, [84 | H, 0 | H, 0 | H, 0, 0])),
                1: _keypaths((2, FP_B, [84 | H, 0 | H, 0 | H, 0, 1])),
            },
            output_keypaths={
                1: _keypaths((7, FP_A, [84 | H, 0 | H, 0 | H, 1, 0])),
            },
        )

    def test_rows(self):
        report = pretty_print(self._psbt(), "mainnet", self.WALLETS)
        assert report.inputs[0] == TxInOut(
            outpoint="01" * 32 + ":0",
            address=None,
            value="0.00200000 BTC",
            path="m/84'/0'/0'/0/0",
            wallet="zeta, alpha",
        )
        assert report.inputs[1].wallet == "alpha"
        assert report.outputs[0].address == address_from_script(_p2wpkh(9), "mainnet")
        assert report.outputs[0].outpoint is None
        assert report.outputs[0].wallet == ""
        assert report.outputs[0].path == ""
        assert report.outputs[1].wallet == "zeta, alpha"
        assert report.outputs[1].value == "0.00240000 BTC"

    def test_balances_sorted_by_name(self):
        report = pretty_print(self._psbt(), "mainnet", self.WALLETS)
        assert report.balances == "alpha: -0.00260000 BTC\nzeta: 0.00040000 BTC"

    def test_no_wallets_no_balances(self):
        report = pretty_print(self._psbt(), "mainnet", [])
        assert report.balances == ""
        assert all(row.wallet == "" for row in report.inputs + report.outputs)

    def test_fee_and_size(self):
        psbt = self._psbt()
        report = pretty_print(psbt, "mainnet", self.WALLETS)
        estimated = estimate_final_weight(psbt) // 4
        assert report.fee.absolute == 10_000
        assert report.fee.rate == pytest.approx(10_000 / estimated)
        assert report.size.estimated == estimated
        assert report.size.unsigned == psbt.unsigned_tx.weight // 4
        assert report.size.psbt == len(psbt.serialize())

    def test_clean_transaction_has_no_findings(self):
        report = pretty_print(self._psbt(), "mainnet", self.WALLETS)
        assert report.info == ()

    def test_idempotent(self):
        psbt = self._psbt()
        first = pretty_print(psbt, "mainnet", self.WALLETS)
        second = pretty_print(PartiallySignedTransaction.parse(psbt.serialize()),
                              "mainnet", list(self.WALLETS))
        assert first == second
        assert first.to_json() == second.to_json()

    def test_to_dict_shape(self):
        d = pretty_print(self._psbt(), "testnet", self.WALLETS).to_dict()
        assert set(d) == {"inputs", "outputs", "balances", "info", "size", "fee"}
        assert d["outputs"][0]["address"].startswith("tb1q")
        assert d["fee"]["absolute_fmt"] == "0.00010000 BTC"
        json.loads(json.dumps(d))

    def test_non_standard_output_rejected(self):
        p2pk = b"\x21" + _pubkey(5) + b"\xac"
        psbt = _psbt([TxOut(10_000, _p2wpkh(1))], [TxOut(1_000, _p2wpkh(2)), TxOut(8_000, p2pk)])
        with pytest.raises(UnclassifiableOutputScript) as exc_info:
            pretty_print(psbt, "mainnet", [])
        assert exc_info.value.index == 1

    def test_negative_fee_rejected(self):
        psbt = _psbt([TxOut(10_000, _p2wpkh(1))], [TxOut(10_001, _p2wpkh(2))])
        with pytest.raises(NegativeFee):
            pretty_print(psbt, "mainnet", [])

    def test_start_reads_files(self, tmp_path):
        psbt_path = tmp_path / "tx.psbt"
        psbt_path.write_bytes(self._psbt().serialize())
        wallets_path = tmp_path / "wallets.json"
        wallets_path.write_text(json.dumps([
            {"name": "zeta", "fingerprints": [FP_A.hex()]},
            {"name": "alpha", "fingerprints": [FP_A.hex(), FP_B.hex()]},
        ]))
        report = start(str(psbt_path), "mainnet", str(wallets_path))
        assert report == pretty_print(self._psbt(), "mainnet", self.WALLETS)
