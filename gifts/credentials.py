"""
Claim credential issuance and verification.

The claim code is public and goes into the claim URL. The optional claim
secret is handed to the sender exactly once; only a salted hash is stored.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

# 16 random bytes -> 128 bits of entropy, 32 hex characters.
CLAIM_CODE_BYTES = 16
CLAIM_SECRET_LENGTH = 12
HASH_ALGORITHM = 'sha256'


class CredentialIssuanceError(RuntimeError):
    """The operating system could not supply secure randomness."""


@dataclass(frozen=True)
class ClaimCredentials:
    claim_code: str
    claim_secret: Optional[str] = None

    def __repr__(self) -> str:
        masked = '***' if self.claim_secret else None
        return f'ClaimCredentials(claim_code={self.claim_code!r}, claim_secret={masked!r})'


def _random_token(kind: str, nbytes: int, urlsafe: bool = False) -> str:
    try:
        if urlsafe:
            return secrets.token_urlsafe(nbytes)
        return secrets.token_hex(nbytes)
    except NotImplementedError as exc:
        raise CredentialIssuanceError(
            f'No secure random source available for {kind}.') from exc


def issue_credentials(with_secret: bool = True) -> ClaimCredentials:
    claim_code = _random_token('claim code', CLAIM_CODE_BYTES)
    claim_secret = None
    if with_secret:
        # 9 bytes encode to exactly 12 url-safe characters.
        claim_secret = _random_token('claim secret', 9, urlsafe=True)[:CLAIM_SECRET_LENGTH]
    return ClaimCredentials(claim_code=claim_code, claim_secret=claim_secret)


def hash_secret(secret: str, salt: Optional[str] = None) -> str:
    """Return ``sha256$<salt>$<hexdigest>`` for the given secret."""
    if salt is None:
        salt = _random_token('secret salt', 16)
    digest = hashlib.sha256(f'{salt}{secret}'.encode('utf-8')).hexdigest()
    return f'{HASH_ALGORITHM}${salt}${digest}'


def verify_secret(secret: Optional[str], encoded: str) -> bool:
    if not secret or not encoded:
        return False
    try:
        algorithm, salt, _ = encoded.split('$', 2)
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM:
        return False
    return hmac.compare_digest(hash_secret(secret, salt), encoded)
