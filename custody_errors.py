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
Error kinds raised by the dice and PSBT audit code paths.

Every error is terminal for the operation that raised it: the inputs are
fully materialised before processing, so nothing is ever retried.  Each
class keeps its structured context as attributes and renders a stable
message that the CLI prints verbatim.
"""

from __future__ import annotations

from typing import Iterable


class CustodyError(ValueError):
    """Base class for every validation failure in this package."""


class InvalidChoice(CustodyError):
    """Textual input outside a closed set (die faces, entropy bits, network)."""

    def __init__(self, value: str, choices: Iterable[object]) -> None:
        self.value = value
        self.choices = tuple(choices)
        joined = ", ".join(str(c) for c in self.choices)
        super().__init__(f"{value} not in ({joined})")


# ---------------------------------------------------------------------------
# Dice
# ---------------------------------------------------------------------------

class EntropyCountMismatch(CustodyError):
    def __init__(self, expected: int, got: int, bits: int) -> None:
        self.expected = expected
        self.got = got
        self.bits = bits
        super().__init__(
            f"Need {expected} dice launches (-l) to achieve {bits} bits "
            f"of entropy (provided: {got})"
        )


class OutOfRangeDigit(CustodyError):
    def __init__(self, value: int, faces: int, index: int) -> None:
        self.value = value
        self.faces = faces
        self.index = index
        super().__init__(f"Numbers must be from 1 to {faces} included")


class InvalidMasterKey(CustodyError):
    """HMAC-SHA512 of the seed produced a scalar outside [1, n-1]."""

    def __init__(self) -> None:
        super().__init__("Seed produces an invalid master key, use other launches")


# ---------------------------------------------------------------------------
# PSBT
# ---------------------------------------------------------------------------

class PsbtDecodeError(CustodyError):
    """Malformed PSBT or transaction bytes."""


class AmbiguousOrMissingUtxo(CustodyError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(
            f"Input {index}: witness_utxo and non_witness_utxo are both "
            f"None or both Some"
        )


class OutpointMismatch(CustodyError):
    def __init__(self, index: int, expected: str, got: str) -> None:
        self.index = index
        self.expected = expected
        self.got = got
        super().__init__(
            f"Input {index}: non_witness_utxo txid {got} does not match "
            f"outpoint txid {expected}"
        )


class OutputIndexOutOfRange(CustodyError):
    def __init__(self, index: int, vout: int, available: int) -> None:
        self.index = index
        self.vout = vout
        self.available = available
        super().__init__(
            f"Input {index}: can't find txout {vout} in previous "
            f"transaction with {available} outputs"
        )


class UnclassifiableOutputScript(CustodyError):
    def __init__(self, index: int, script_hex: str) -> None:
        self.index = index
        self.script_hex = script_hex
        super().__init__(f"Output {index}: non default script {script_hex}")


class UnestimableInput(CustodyError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(
            f"Input {index}: can't estimate spending weight, both redeem "
            f"and witness script are missing"
        )


class NegativeFee(CustodyError):
    def __init__(self, inputs: int, outputs: int) -> None:
        self.inputs = inputs
        self.outputs = outputs
        super().__init__(
            f"Outputs ({outputs} sats) exceed inputs ({inputs} sats)"
        )


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

class InvalidWalletFile(CustodyError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: invalid wallet file ({reason})")
