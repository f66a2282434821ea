"""Password-encrypted mnemonic keystore using PyNaCl (Argon2i + SecretBox)."""

from __future__ import annotations

import json
from pathlib import Path

from nacl import pwhash, secret, utils
from nacl.exceptions import CryptoError

from bond_credit.wallet.derivation import derive_wallets, mnemonic_to_seed, normalize_mnemonic

KEYSTORE_FILE = "keystore.json"
KEYSTORE_VERSION = 1


def keystore_path(wallet_dir: Path) -> Path:
    return Path(wallet_dir) / KEYSTORE_FILE


def _derive_box_key(password: str, salt: bytes, opslimit: int, memlimit: int) -> bytes:
    return pwhash.argon2i.kdf(
        secret.SecretBox.KEY_SIZE,
        password.encode("utf-8"),
        salt,
        opslimit=opslimit,
        memlimit=memlimit,
    )


def create_keystore(
    wallet_dir: Path,
    mnemonic: str,
    password: str,
    network: str = "mainnet",
    count: int = 5,
) -> list[dict]:
    """Encrypt *mnemonic* and save it together with the derived public accounts.

    Parameters
    ----------
    wallet_dir:
        Directory where ``keystore.json`` will be written.
    mnemonic:
        BIP-39 phrase. It is validated before anything is written.
    password:
        Password used to encrypt the mnemonic.
    network:
        NEAR network the derived implicit accounts belong to.
    count:
        Number of wallets to derive and record.

    Returns
    -------
    list[dict]
        Public info (index, path, account id, public key) for each wallet.

    Raises
    ------
    FileExistsError
        If a keystore already exists in *wallet_dir*.
    ValueError
        If the mnemonic is invalid or the password is empty.
    """
    path = keystore_path(wallet_dir)
    if path.exists():
        raise FileExistsError(
            f"Keystore already exists at {path}. "
            "Delete it first if you want to create a new one."
        )
    if not password:
        raise ValueError("Password must not be empty")

    mnemonic = normalize_mnemonic(mnemonic)
    mnemonic_to_seed(mnemonic)
    wallets = [w.public_info() for w in derive_wallets(mnemonic, network, count)]

    salt = utils.random(pwhash.argon2i.SALTBYTES)
    opslimit = pwhash.argon2i.OPSLIMIT_INTERACTIVE
    memlimit = pwhash.argon2i.MEMLIMIT_INTERACTIVE
    box = secret.SecretBox(_derive_box_key(password, salt, opslimit, memlimit))
    ciphertext = box.encrypt(mnemonic.encode("utf-8"))

    data = {
        "version": KEYSTORE_VERSION,
        "kdf": "argon2i",
        "salt": salt.hex(),
        "opslimit": opslimit,
        "memlimit": memlimit,
        "ciphertext": bytes(ciphertext).hex(),
        "network": network,
        "wallets": wallets,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return wallets


def load_public_info(wallet_dir: Path) -> dict | None:
    """Read network and account ids without decrypting.

    Returns ``None`` if no keystore file exists.
    """
    path = keystore_path(wallet_dir)
    if not path.exists():
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    return {"network": data.get("network", "mainnet"), "wallets": data.get("wallets", [])}


def decrypt_mnemonic(wallet_dir: Path, password: str) -> str:
    """Decrypt the stored mnemonic.

    Raises
    ------
    FileNotFoundError
        If no keystore file exists.
    ValueError
        If the password is incorrect.
    """
    path = keystore_path(wallet_dir)
    if not path.exists():
        raise FileNotFoundError(f"No keystore found at {path}")

    data = json.loads(path.read_text(encoding="utf-8"))
    key = _derive_box_key(
        password,
        bytes.fromhex(data["salt"]),
        data["opslimit"],
        data["memlimit"],
    )
    try:
        plaintext = secret.SecretBox(key).decrypt(bytes.fromhex(data["ciphertext"]))
    except CryptoError as exc:
        raise ValueError("Failed to decrypt keystore: wrong password") from exc
    return plaintext.decode("utf-8")
