"""
NodeGate - Wallet Address Allow-List
======================================
The set of wallet addresses allowed to log in, parsed once per process from
the ALLOWED_WALLETS setting (comma-separated).

An empty list means "public mode": every address is allowed and every
address is an admin. Otherwise the first configured address is the admin.
"""


class AllowList:
    """
    Immutable wallet allow-list.

    Attributes:
        addresses: Configured addresses in their original order, deduplicated.
    """

    def __init__(self, raw: str | None = ""):
        """
        Args:
            raw: Comma-separated address list. Blank entries are ignored and
                 surrounding whitespace is trimmed.
        """
        ordered: list[str] = []
        for part in (raw or "").split(","):
            address = part.strip()
            if address and address not in ordered:
                ordered.append(address)
        self.addresses: tuple[str, ...] = tuple(ordered)
        self._members = frozenset(ordered)

    def allowed_addresses(self) -> frozenset[str]:
        return self._members

    def is_public_mode(self) -> bool:
        """True when no address is configured."""
        return not self._members

    def is_address_allowed(self, address: str | None) -> bool:
        """
        Check whether an address may authenticate.

        Empty or missing addresses are never allowed, even in public mode.
        """
        if not address:
            return False
        return self.is_public_mode() or address in self._members

    def is_address_admin(self, address: str | None) -> bool:
        """In public mode everyone is admin; otherwise only the first entry."""
        if not address:
            return False
        if self.is_public_mode():
            return True
        return self.addresses[0] == address

    def __len__(self) -> int:
        return len(self.addresses)
