"""
External collaborator interfaces and in-memory implementations.

The trust-bond core never owns the asset ledger, the attestation
infrastructure, or archival storage. It talks to them through these
abstract interfaces. The in-memory implementations back the API server
and the tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
import hashlib

from jwcrypto import jwk, jws
from jwcrypto.common import JWException, json_encode

from trustbond.validation.receipt import ValidationReceipt


class AssetCollaborator(ABC):
    """The asset/ownership ledger the trust record is bound to."""

    @abstractmethod
    def is_frozen(self, asset_id: str) -> bool: ...

    @abstractmethod
    def set_frozen(self, asset_id: str, frozen: bool) -> None: ...

    @abstractmethod
    def burn(self, asset_id: str) -> None: ...

    @abstractmethod
    def on_transfer(self, asset_id: str) -> Optional[datetime]:
        """Timestamp of the last ownership change, if any."""

    @abstractmethod
    def owner_of(self, asset_id: str) -> Optional[str]: ...


class AttestationCollaborator(ABC):
    """Attestation-issuing infrastructure (signatures and validator stakes)."""

    @abstractmethod
    def verify_receipt(self, receipt: ValidationReceipt) -> bool: ...

    @abstractmethod
    def validator_stake(self, identity: str) -> int: ...


class ArchivalCollaborator(ABC):
    """Permanent off-chain storage for history blobs."""

    @abstractmethod
    def store(self, blob: bytes) -> str:
        """Persist a blob and return its reference."""


class InMemoryAssetLedger(AssetCollaborator):
    """Asset ledger kept in process memory."""

    def __init__(self) -> None:
        self._owners: dict[str, str] = {}
        self._frozen: set[str] = set()
        self._burned: set[str] = set()
        self._transfers: dict[str, datetime] = {}

    def mint(self, asset_id: str, owner: str) -> None:
        self._owners[asset_id] = owner

    def transfer(self, asset_id: str, new_owner: str, at: Optional[datetime] = None) -> None:
        """Move ownership. Frozen or burned assets cannot move."""
        if asset_id in self._burned:
            raise ValueError(f"Asset {asset_id} is burned")
        if asset_id in self._frozen:
            raise ValueError(f"Asset {asset_id} is frozen")
        self._owners[asset_id] = new_owner
        self._transfers[asset_id] = at or datetime.now(timezone.utc)

    def is_frozen(self, asset_id: str) -> bool:
        return asset_id in self._frozen

    def set_frozen(self, asset_id: str, frozen: bool) -> None:
        if frozen:
            self._frozen.add(asset_id)
        else:
            self._frozen.discard(asset_id)

    def burn(self, asset_id: str) -> None:
        self._burned.add(asset_id)
        self._frozen.discard(asset_id)
        self._owners.pop(asset_id, None)

    def is_burned(self, asset_id: str) -> bool:
        return asset_id in self._burned

    def on_transfer(self, asset_id: str) -> Optional[datetime]:
        return self._transfers.get(asset_id)

    def owner_of(self, asset_id: str) -> Optional[str]:
        return self._owners.get(asset_id)


def generate_validator_key() -> jwk.JWK:
    """Fresh Ed25519 key pair for a validator."""
    return jwk.JWK.generate(kty="OKP", crv="Ed25519")


def _load_ed25519(key_json: str) -> jwk.JWK:
    try:
        key = jwk.JWK.from_json(key_json)
    except (JWException, ValueError, TypeError) as e:
        raise ValueError(f"Invalid JWK: {e}")
    if key.get("kty") != "OKP" or key.get("crv") != "Ed25519":
        raise ValueError("Key must be an Ed25519 key (OKP with crv=Ed25519)")
    return key


class ReceiptSigner:
    """
    Signs receipts with a validator's Ed25519 private key.

    The signature is a compact JWS whose payload is the receipt's
    signing digest. Only the validator holds this object; the attestation
    service keeps the public half.

    Usage:
        signer = svc.enroll("val-1", stake=500)
        receipt = signer.sign(ValidationReceipt(validator_id="val-1", ...))
    """

    def __init__(self, private_key: str, validator_id: str) -> None:
        if not validator_id:
            raise ValueError("ReceiptSigner requires a validator_id")
        self.validator_id = validator_id
        self._key = _load_ed25519(private_key)
        if not self._key.has_private:
            raise ValueError("ReceiptSigner requires a private key")

    def sign(self, receipt: ValidationReceipt) -> ValidationReceipt:
        """Return a copy of the receipt carrying this validator's signature."""
        if receipt.validator_id != self.validator_id:
            raise ValueError(
                f"Signer for {self.validator_id} cannot sign for {receipt.validator_id}"
            )
        token = jws.JWS(receipt.signing_digest().encode())
        protected_header = {"alg": "EdDSA", "typ": "trustbond-receipt", "kid": self.validator_id}
        token.add_signature(self._key, None, json_encode(protected_header), None)
        return receipt.with_signature(token.serialize(compact=True))

    def public_key(self) -> str:
        return self._key.export_public()

    def private_key(self) -> str:
        return self._key.export_private()


class InMemoryAttestationService(AttestationCollaborator):
    """
    Ed25519 (JWS) receipt verification against registered public keys.

    Private keys never live here: ``enroll`` hands the freshly generated
    key to the registrant once, ``register_validator`` takes a public key
    the validator generated itself.

    Usage:
        svc = InMemoryAttestationService()
        signer = svc.enroll("val-1", stake=500)
        receipt = signer.sign(ValidationReceipt(validator_id="val-1", ...))
        assert svc.verify_receipt(receipt)
    """

    def __init__(self) -> None:
        self._keys: dict[str, jwk.JWK] = {}
        self._stakes: dict[str, int] = {}

    def register_validator(self, identity: str, public_key: str, stake: int = 0) -> None:
        """Register a validator's public JWK (JSON). Private material is dropped."""
        if not identity:
            raise ValueError("Validator identity is required")
        key = _load_ed25519(public_key)
        self._keys[identity] = jwk.JWK.from_json(key.export_public())
        self._stakes[identity] = stake

    def enroll(self, identity: str, stake: int = 0) -> ReceiptSigner:
        """Generate a key pair, register its public half and return the signer."""
        key = generate_validator_key()
        self.register_validator(identity, key.export_public(), stake=stake)
        return ReceiptSigner(key.export_private(), identity)

    def set_stake(self, identity: str, stake: int) -> None:
        self._stakes[identity] = stake

    def public_key(self, identity: str) -> Optional[str]:
        key = self._keys.get(identity)
        return key.export_public() if key is not None else None

    def verify_receipt(self, receipt: ValidationReceipt) -> bool:
        key = self._keys.get(receipt.validator_id)
        if key is None or not receipt.signature:
            return False
        try:
            token = jws.JWS()
            token.deserialize(receipt.signature)
            token.verify(key, alg="EdDSA")
        except (JWException, ValueError):
            return False
        return token.payload == receipt.signing_digest().encode()

    def validator_stake(self, identity: str) -> int:
        return self._stakes.get(identity, 0)


class InMemoryArchive(ArchivalCollaborator):
    """Content-addressed blob store."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    def store(self, blob: bytes) -> str:
        reference = f"sha256:{hashlib.sha256(blob).hexdigest()}"
        self._blobs[reference] = blob
        return reference

    def load(self, reference: str) -> Optional[bytes]:
        return self._blobs.get(reference)
