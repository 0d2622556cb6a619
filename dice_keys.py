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
Dice-Generated BIP-32 Master Keys
=================================
- Physical die launches decoded as one mixed-radix integer
- Launch count pinned to the die shape and the requested entropy width
- Integer rendered as minimal big-endian seed bytes -> BIP-32 master key
- Provenance (faces, launches, integer) attached for audit
- JSON key files, optionally AES-256-GCM encrypted

Seed Width Note:
    The seed is the *minimal* big-endian encoding of the dice integer,
    not a fixed-width buffer.  A sequence whose leading launches are all
    the lowest face yields a shorter seed.  Existing keys depend on this,
    so it must not be "fixed" by zero-padding.

Launch Count Note:
    ``required_dice_launches`` returns the largest count whose
    ``faces ** count`` stays within ``2 ** bits``.  The achieved entropy
    is therefore up to ``log2(faces)`` bits under the nominal target.
    Existing keys depend on this count as well.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from base64 import b64decode, b64encode
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from base58 import b58encode_check
from coincurve import PrivateKey as _Secp256k1PrivateKey
from Crypto.Cipher import AES
from Crypto.Protocol.KDF import scrypt

from bitcoin_protocol import hash160, network_params
from custody_errors import (
    EntropyCountMismatch,
    InvalidChoice,
    InvalidMasterKey,
    OutOfRangeDigit,
)

log = logging.getLogger("dice_keys")
log.addHandler(logging.NullHandler())

# secp256k1 group order
_CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


# ============================================================
# DIE SHAPES AND ENTROPY TARGETS
# ============================================================

class DieShape(Enum):
    """Platonic solids plus a coin; the value is the face count."""
    COIN = 2
    D4   = 4
    D6   = 6
    D8   = 8
    D12  = 12
    D20  = 20

    @property
    def faces(self) -> int:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "DieShape":
        for shape in cls:
            if str(shape.value) == text.strip():
                return shape
        raise InvalidChoice(text, (s.value for s in cls))


class EntropyTarget(Enum):
    BITS_128 = 128
    BITS_192 = 192
    BITS_256 = 256

    @property
    def bits(self) -> int:
        return self.value

    @property
    def ceiling(self) -> int:
        """2 ** bits"""
        return 1 << self.value

    @classmethod
    def parse(cls, text: str) -> "EntropyTarget":
        for target in cls:
            if str(target.value) == text.strip():
                return target
        raise InvalidChoice(text, (t.value for t in cls))


# ============================================================
# LAUNCH COUNT / MIXED-RADIX DECODING
# ============================================================

def required_dice_launches(faces: int, max_value: int) -> int:
    """Largest ``count`` with ``faces ** count <= max_value``."""
    count = 0
    acc = 1
    while True:
        count += 1
        acc *= faces
        if acc > max_value:
            return count - 1


def multiply_dice_launches(launches: Sequence[int], faces: int) -> int:
    """
    Horner evaluation of the launches as base-``faces`` digits.

    Launch values are 1-indexed (what the die shows); digit = value - 1.
    The first launch is the most significant digit.
    """
    acc = launches[0] - 1
    for value in launches[1:]:
        acc = acc * faces + (value - 1)
    return acc


def seed_bytes(value: int) -> bytes:
    """Minimal big-endian bytes of *value*; zero encodes as a single 0x00."""
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


# ============================================================
# BIP-32 MASTER KEY
# ============================================================

@dataclass(frozen=True)
class DiceProvenance:
    """How a master key was produced. Informational, never re-derived from."""
    faces: int
    launches: str     # e.g. "[1, 6, 3]"
    value: str        # derived integer, decimal


@dataclass(frozen=True)
class PrivateMasterKey:
    name: str
    xprv: str
    xpub: str
    fingerprint: str  # 4-byte hex
    dice: Optional[DiceProvenance] = None

    @classmethod
    def new(
        cls,
        network: str,
        seed: bytes,
        name: str,
        dice: Optional[DiceProvenance] = None,
    ) -> "PrivateMasterKey":
        """BIP-32 master key generation from *seed*."""
        params = network_params(network)
        digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        secret, chain_code = digest[:32], digest[32:]
        if not 0 < int.from_bytes(secret, "big") < _CURVE_ORDER:
            raise InvalidMasterKey()

        public = _Secp256k1PrivateKey(secret).public_key.format(compressed=True)
        # depth 0, parent fingerprint 0, child number 0
        header = b"\x00" + b"\x00" * 4 + b"\x00" * 4 + chain_code
        xprv = b58encode_check(params.xprv_version + header + b"\x00" + secret)
        xpub = b58encode_check(params.xpub_version + header + public)

        return cls(
            name=name,
            xprv=xprv.decode(),
            xpub=xpub.decode(),
            fingerprint=hash160(public)[:4].hex(),
            dice=dice,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PrivateMasterKey":
        dice = d.get("dice")
        return cls(
            name=d["name"],
            xprv=d["xprv"],
            xpub=d["xpub"],
            fingerprint=d["fingerprint"],
            dice=DiceProvenance(**dice) if dice else None,
        )


def calculate_key(
    launches: Sequence[int],
    faces: int,
    network: str,
    name: str,
) -> PrivateMasterKey:
    """Decode *launches*, derive the master key and attach provenance."""
    value = multiply_dice_launches(launches, faces)
    dice = DiceProvenance(
        faces=faces,
        launches=str(list(launches)),
        value=str(value),
    )
    return PrivateMasterKey.new(network, seed_bytes(value), name, dice)


# ============================================================
# KEY OUTPUT + PERSISTENCE
# ============================================================

@dataclass(frozen=True)
class MasterKeyOutput:
    """
    A freshly derived master key plus the network it belongs to.

    Persistence is optional and explicit: ``save()`` writes the plain JSON
    key file, ``save_encrypted()`` the AES-256-GCM wrapped one.
    """
    key: PrivateMasterKey
    network: str
    name: str

    SCRYPT_N = 2**20

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "network": self.network,
            "key": self.key.to_dict(),
        }

    def save(self, filepath: str) -> None:
        Path(filepath).write_text(json.dumps(self.to_dict(), indent=2))
        log.info("Key %s saved -> %s", self.name, filepath)

    def save_encrypted(self, filepath: str, password: str) -> None:
        """
        Write the key file encrypted with AES-256-GCM.

        KDF: scrypt(N=SCRYPT_N, r=8, p=1) -> 32-byte key
        """
        plaintext = json.dumps(self.to_dict(), separators=(",", ":")).encode()

        kdf_salt = secrets.token_bytes(16)
        key = scrypt(password.encode(), kdf_salt, 32, N=self.SCRYPT_N, r=8, p=1)
        cipher = AES.new(key, AES.MODE_GCM)
        ct, tag = cipher.encrypt_and_digest(plaintext)

        blob = {
            "v": 1,
            "kdf": f"scrypt-N{self.SCRYPT_N.bit_length() - 1}-r8-p1",
            "salt": kdf_salt.hex(),
            "nonce": cipher.nonce.hex(),
            "tag": tag.hex(),
            "ct": b64encode(ct).decode(),
        }
        Path(filepath).write_text(json.dumps(blob, indent=2))
        log.info("Key %s saved encrypted -> %s", self.name, filepath)

    @classmethod
    def load(cls, filepath: str) -> "MasterKeyOutput":
        return cls._from_dict(json.loads(Path(filepath).read_text()))

    @classmethod
    def load_encrypted(cls, filepath: str, password: str) -> "MasterKeyOutput":
        """Decrypt a key file written by ``save_encrypted``.

        A wrong password or a tampered file raises ``ValueError``.
        """
        blob = json.loads(Path(filepath).read_text())

        kdf_salt = bytes.fromhex(blob["salt"])
        key = scrypt(password.encode(), kdf_salt, 32, N=cls.SCRYPT_N, r=8, p=1)
        cipher = AES.new(key, AES.MODE_GCM, nonce=bytes.fromhex(blob["nonce"]))

        plaintext = cipher.decrypt_and_verify(
            b64decode(blob["ct"]),
            bytes.fromhex(blob["tag"]),
        )
        return cls._from_dict(json.loads(plaintext))

    @classmethod
    def _from_dict(cls, d: Dict[str, Any]) -> "MasterKeyOutput":
        return cls(
            key=PrivateMasterKey.from_dict(d["key"]),
            network=d["network"],
            name=d["name"],
        )


# ============================================================
# USER-FACING API
# ============================================================

@dataclass(frozen=True)
class DiceOptions:
    """
    One dice key request.

    >>> opt = DiceOptions(DieShape.D20, EntropyTarget.BITS_128, "a", (1,) * 29)
    >>> roll("testnet", opt).key.dice.value
    '0'
    """
    faces: DieShape
    bits: EntropyTarget
    key_name: str
    launches: Tuple[int, ...]

    DEFAULT_BITS = EntropyTarget.BITS_256

    @property
    def required_launches(self) -> int:
        return required_dice_launches(self.faces.faces, self.bits.ceiling)

    def validate(self) -> None:
        faces = self.faces.faces
        count = self.required_launches
        if len(self.launches) != count:
            raise EntropyCountMismatch(count, len(self.launches), self.bits.bits)

        for index, value in enumerate(self.launches):
            if not 1 <= value <= faces:
                raise OutOfRangeDigit(value, faces, index)


def roll(network: str, opt: DiceOptions) -> MasterKeyOutput:
    """Validate the launches and derive the master key. Nothing is written."""
    opt.validate()

    key = calculate_key(opt.launches, opt.faces.faces, network, opt.key_name)
    log.info(
        "Dice key %s derived: d%d, %d launches, %d bits, fingerprint=%s",
        opt.key_name, opt.faces.faces, len(opt.launches), opt.bits.bits,
        key.fingerprint,
    )
    return MasterKeyOutput(key=key, network=network, name=opt.key_name)
