"""
Authenticated session value.

A :class:`Session` carries the master keypair of the authenticated
identity and is passed explicitly into every component, instead of
components reaching into shared global user state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from shogun_core.errors import NotAuthenticated
from shogun_core.sea import KeyPair

logger = logging.getLogger("shogun_session")

MasterKeyPair = KeyPair

# Re-establishes the remote authenticated session for a keypair.
Authenticator = Callable[[KeyPair], Awaitable[None]]


@dataclass
class Session:
    """The authenticated identity a facade acts for.

    ``pair`` is owned by the authentication collaborator and is never
    mutated here.  ``authenticator`` is awaited by :meth:`reauthenticate`
    before a storage retry resubmits a write.
    """
    pair: Optional[KeyPair] = None
    alias: str = ""
    authenticator: Optional[Authenticator] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.pair is not None and bool(self.pair.pub)

    @property
    def pub(self) -> str:
        return self.require().pub

    def require(self) -> KeyPair:
        """Return the master keypair or raise :class:`NotAuthenticated`."""
        if self.pair is None or not self.pair.pub:
            raise NotAuthenticated()
        return self.pair

    async def reauthenticate(self) -> None:
        pair = self.require()
        if self.authenticator is not None:
            logger.debug(f"Re-authenticating session for {pair.pub[:12]}...")
            await self.authenticator(pair)

    def logout(self) -> None:
        self.pair = None
        self.alias = ""
