"""
FlareAuth - Device Trust

Read-only decision: is this sign-in coming from the device the user last
fully authenticated from?
"""

from __future__ import annotations

import hmac
import logging

from ..result import Err, Ok, Result
from .core import AuthStore
from .faults import AUTH_INTERNAL

logger = logging.getLogger("flareauth.auth.device")


class DeviceTrustEvaluator:
    """
    Compares the presented user-agent fingerprint with the stored DeviceContext.

    Never mutates state; the orchestrator records the new context once a
    flow completes full authentication. The IP is kept on the context for
    the host's benefit but does not influence the decision.
    """

    def __init__(self, store: AuthStore):
        self.store = store

    async def is_trusted(self, user_id: str, ip: str, user_agent_fingerprint: str) -> Result[bool]:
        try:
            context = await self.store.get_device_context(user_id)
        except Exception as exc:
            logger.error("Device context lookup failed for user %s", user_id, exc_info=True)
            return Err(AUTH_INTERNAL.wrap(exc, "get_device_context"))

        if context is None:
            logger.debug("No device context for user %s", user_id)
            return Ok(False)

        trusted = hmac.compare_digest(
            context.user_agent_fingerprint.encode(),
            user_agent_fingerprint.encode(),
        )
        if not trusted:
            logger.debug("Unrecognized device for user %s (ip=%s)", user_id, ip)
        return Ok(trusted)
