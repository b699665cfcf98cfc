"""
Fingerprint Engine: canonical serialization, content hash and keyed MAC.

A document is serialized as compact JSON with sorted keys, so the same
logical document always yields the same bytes regardless of how a JSON
store reorders object keys. The hash is SHA-256 over those bytes; when a
server secret is configured an HMAC-SHA256 is computed over the same bytes.
Without a secret no MAC is produced.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass


@dataclass(frozen=True)
class Fingerprint:
    hash: str
    mac: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    hash_ok: bool
    hmac_ok: bool

    @property
    def ok(self) -> bool:
        return self.hash_ok and self.hmac_ok


def canonical_bytes(document: dict) -> bytes:
    """Serialize a document deterministically.

    No ``default=`` fallback: a value JSON cannot represent raises TypeError,
    since the index builder only ever hands over plain JSON types.
    """
    raw = json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return raw.encode("utf-8")


def _equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class FingerprintEngine:
    """Seals and verifies documents. Pure and synchronous; safe to share."""

    def __init__(self, secret: str | bytes | None = None):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._secret = secret or None

    @property
    def keyed(self) -> bool:
        return self._secret is not None

    def _mac(self, payload: bytes) -> str | None:
        if self._secret is None:
            return None
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def seal(self, document: dict) -> Fingerprint:
        payload = canonical_bytes(document)
        return Fingerprint(
            hash=hashlib.sha256(payload).hexdigest(),
            mac=self._mac(payload),
        )

    def verify(
        self,
        document: dict,
        expected_hash: str | None,
        expected_mac: str | None,
    ) -> VerificationResult:
        recomputed = self.seal(document)
        hash_ok = expected_hash is not None and _equal(recomputed.hash, expected_hash)
        if not expected_mac and recomputed.mac is None:
            hmac_ok = True
        elif expected_mac and recomputed.mac is not None:
            hmac_ok = _equal(recomputed.mac, expected_mac)
        else:
            hmac_ok = False
        return VerificationResult(hash_ok=hash_ok, hmac_ok=hmac_ok)
