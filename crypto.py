import base64
import binascii
import hashlib
import hmac
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import IV_SIZE, KEY_SIZE, PBKDF2_ITERATIONS, SALT_SIZE

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1


# ----- symmetric (PBKDF2 -> AES-GCM) -----
def pbkdf2_kdf(password: str, salt: bytes, length: int = KEY_SIZE) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=length, salt=salt, iterations=PBKDF2_ITERATIONS)
    return kdf.derive(password.encode("utf-8"))

def aesgcm_encrypt(key: bytes, plaintext: bytes, nonce: Optional[bytes] = None, aad: Optional[bytes] = None):
    aes = AESGCM(key)
    nonce = nonce or os.urandom(IV_SIZE)
    ct = aes.encrypt(nonce, plaintext, aad)
    return nonce, ct

def aesgcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    return aes.decrypt(nonce, ciphertext, aad)

def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")

def _unb64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


# ----- envelopes -----
def is_envelope(obj) -> bool:
    return isinstance(obj, dict) and obj.get("enc") is True

def encrypt_json(plaintext_json: str, password: str) -> dict:
    """
    Wrap a serialized JSON document in an encrypted envelope.

    Salt and IV are fresh on every call, so encrypting the same document twice
    never yields the same ciphertext.
    """
    salt = os.urandom(SALT_SIZE)
    key = pbkdf2_kdf(password, salt)
    iv, ct = aesgcm_encrypt(key, plaintext_json.encode("utf-8"))
    return {"enc": True, "v": ENVELOPE_VERSION, "salt": _b64(salt), "iv": _b64(iv), "data": _b64(ct)}

def decrypt_json(envelope: dict, password: str) -> Optional[str]:
    """
    Return the plaintext JSON string, or None if the password is wrong or the
    envelope is damaged; the two cases are not told apart.
    """
    if not is_envelope(envelope) or password is None:
        return None
    try:
        salt = _unb64(envelope["salt"])
        iv = _unb64(envelope["iv"])
        ct = _unb64(envelope["data"])
        key = pbkdf2_kdf(password, salt)
        return aesgcm_decrypt(key, iv, ct).decode("utf-8")
    except InvalidTag:
        logger.warning("envelope authentication failed (wrong password or tampered data)")
        return None
    except (KeyError, TypeError, ValueError, binascii.Error):
        logger.warning("malformed envelope")
        return None


# ----- shared-secret hashing -----
def sha256_hex(secret: str) -> str:
    return hashlib.sha256(str(secret).encode("utf-8")).hexdigest()

def safe_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(str(a).encode("utf-8"), str(b).encode("utf-8"))
