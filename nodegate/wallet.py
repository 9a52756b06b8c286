"""
NodeGate - Wallet Signature Verification
==========================================
Verifies that a message was signed by the owner of a Substrate (Polkadot)
SS58 wallet address.

Browser wallets sign with different schemes, so verification tries sr25519
first (the Polkadot default), then ed25519, then ecdsa. The first scheme
that verifies wins. Messages may be plain text or 0x-prefixed hex, and the
"<Bytes>...</Bytes>" wrapping added by the polkadot-js extension is accepted
by substrate-interface itself.
"""

import logging
import re
from dataclasses import dataclass

from substrateinterface import Keypair, KeypairType

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^[a-zA-Z0-9]{48}$")

# Order matters: most common scheme first.
SCHEMES = (
    ("sr25519", KeypairType.SR25519),
    ("ed25519", KeypairType.ED25519),
    ("ecdsa", KeypairType.ECDSA),
)


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    method: str


def is_valid_address_format(address: str | None) -> bool:
    """SS58 addresses used by the fleet are 48 alphanumeric characters."""
    return bool(address) and bool(ADDRESS_PATTERN.match(address))


class WalletVerifier:
    """Checks wallet signatures against an SS58 address."""

    def verify(self, message: str, signature: str, address: str) -> VerificationResult:
        """
        Verify a signature with every supported scheme.

        Args:
            message:   The signed message (text or 0x-prefixed hex).
            signature: Hex signature, with or without 0x prefix.
            address:   SS58 address of the claimed signer.

        Returns:
            VerificationResult with the scheme that matched, or
            method "none" when no scheme verified.
        """
        for name, crypto_type in SCHEMES:
            try:
                keypair = Keypair(ss58_address=address, crypto_type=crypto_type)
                if keypair.verify(message, signature):
                    logger.info("Signature verified with %s", name)
                    return VerificationResult(True, name)
            except Exception as e:
                # A scheme that cannot even parse the key or signature just
                # does not match; the next one gets its turn.
                logger.debug("%s verification error: %s", name, e)

        return VerificationResult(False, "none")
