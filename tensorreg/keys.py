# ====================================================================== #
# tensorreg/keys.py                                                      #
# Seed containers and the signer built on substrate-interface Keypair.   #
# ====================================================================== #

from __future__ import annotations

from typing import Union

from substrateinterface import Keypair, KeypairType

from tensorreg.errors import InvalidKey

CRYPTO_TYPES = {
    "sr25519": KeypairType.SR25519,
    "ed25519": KeypairType.ED25519,
}


class SecretSeed:
    """
    Holds a seed (dev URI, mnemonic or 0x hex seed) in a mutable buffer so it
    can be zeroed once a keypair has been derived. Copies are refused.
    """

    __slots__ = ("_buf",)

    def __init__(self, value: str):
        self._buf = bytearray(value.encode("utf-8"))

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def reveal(self) -> str:
        if self.wiped:
            raise ValueError("seed has been wiped")
        return self._buf.decode("utf-8")

    def wipe(self) -> None:
        buf = getattr(self, "_buf", None)
        if buf is None:
            return
        for i in range(len(buf)):
            buf[i] = 0

    def __del__(self):
        self.wipe()

    def __copy__(self):
        raise TypeError("SecretSeed cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("SecretSeed cannot be copied")

    def __reduce__(self):
        raise TypeError("SecretSeed cannot be pickled")

    def __repr__(self) -> str:
        return "SecretSeed(***)"


def _keypair_from_seed(seed: str, crypto_type: int) -> Keypair:
    seed = seed.strip()
    if seed.startswith("0x") and "/" not in seed:
        return Keypair.create_from_seed(seed_hex=seed, crypto_type=crypto_type)
    return Keypair.create_from_uri(seed, crypto_type=crypto_type)


class Signer:
    """
    Signing capability for one key. Signing is a pure function of the seed and
    the message; only the public half is ever exposed.
    """

    def __init__(self, keypair: Keypair, role: str = "coldkey"):
        self._keypair = keypair
        self.role = role

    @classmethod
    def from_seed(
        cls,
        seed: SecretSeed,
        *,
        role: str = "coldkey",
        crypto_type: str = "sr25519",
        wipe: bool = True,
    ) -> "Signer":
        if crypto_type not in CRYPTO_TYPES:
            raise InvalidKey(role, f"unsupported crypto type {crypto_type!r}")
        try:
            keypair = _keypair_from_seed(seed.reveal(), CRYPTO_TYPES[crypto_type])
        except Exception as e:  # noqa: BLE001
            raise InvalidKey(role, str(e) or type(e).__name__) from e
        finally:
            if wipe:
                seed.wipe()
        return cls(keypair, role=role)

    # the chain client hands this to create_signed_extrinsic
    @property
    def keypair(self) -> Keypair:
        return self._keypair

    @property
    def public_key(self) -> bytes:
        return bytes(self._keypair.public_key)

    @property
    def public_hex(self) -> str:
        return "0x" + self.public_key.hex()

    @property
    def ss58_address(self) -> str:
        return self._keypair.ss58_address

    def sign(self, message: Union[str, bytes]) -> bytes:
        if isinstance(message, str):
            message = message.encode()
        return bytes(self._keypair.sign(message))

    def verify(self, message: Union[str, bytes], signature: bytes) -> bool:
        if isinstance(message, str):
            message = message.encode()
        return bool(self._keypair.verify(message, signature))

    def __repr__(self) -> str:
        return f"Signer(role={self.role}, ss58={self.ss58_address})"
