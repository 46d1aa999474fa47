"""
Sponsored registration pipeline.

Received -> Validated -> Gated -> Verifying -> Reconciling -> FeeChecked
-> Submitted -> Confirmed, with a rejection exit at every step. Each
rejection is a DirectoryError subclass; the router maps it to a status code.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from agent_directory.directory_client import Confirmation, DirectoryClient
from agent_directory.errors import (
    ChainError, ConflictError, ExternalUnavailableError, FundingError,
    SponsorNotConfiguredError, ValidationError,
)
from agent_directory.gate import GateStore
from agent_directory.verifiers import VerifierRegistry

logger = logging.getLogger("agent_directory.register")

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 32
SCAN_PAGE_SIZE = 500


@dataclass
class PlatformClaim:
    platform: str
    handle: str


@dataclass
class RegistrationResult:
    name: str
    platforms: List[str]
    urls: List[str]
    tx_hash: str
    block_number: int
    unverified: List[str] = field(default_factory=list)


def validate_name(name, legacy: bool = False) -> str:
    """Trim and check an agent name. Legacy names skip the charset rule."""
    if not name or not isinstance(name, str):
        raise ValidationError("Missing moltbook_username" if legacy else "Missing agent name")
    agent_name = name.strip()
    if not NAME_MIN_LENGTH <= len(agent_name) <= NAME_MAX_LENGTH:
        label = "Username" if legacy else "Name"
        raise ValidationError(f"{label} must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters")
    if not legacy and not NAME_PATTERN.match(agent_name):
        raise ValidationError("Name can only contain letters, numbers, underscores, and hyphens")
    return agent_name


class RegistrationPipeline:

    def __init__(
        self,
        directory: DirectoryClient,
        verifiers: VerifierRegistry,
        gate: GateStore,
        gas_buffer_wei: int,
        confirm_timeout: float = 120.0,
    ):
        self.directory = directory
        self.verifiers = verifiers
        self.gate = gate
        self.gas_buffer_wei = gas_buffer_wei
        self.confirm_timeout = confirm_timeout

    async def register(
        self,
        name,
        claims: Optional[Iterable[PlatformClaim]],
        caller_id: str,
        legacy: bool = False,
    ) -> RegistrationResult:
        agent_name = validate_name(name, legacy=legacy)
        claims = list(claims or [])
        if not claims:
            raise ValidationError(
                "Provide at least one platform. Example: [{platform: 'moltbook', handle: 'YourName'}]"
            )

        self.gate.admit(caller_id, agent_name)
        submitted = False
        try:
            platforms, urls, unverified = await self._verify(claims)
            await self._reconcile(agent_name)
            fee = await self._check_funds()

            logger.info(f"[REGISTER] {agent_name} on {', '.join(platforms)}")
            try:
                tx_hash = await self.directory.submit_registration(agent_name, platforms, urls, fee)
            except ChainError as e:
                if e.tx_hash:
                    # Broadcast attempted; the name stays taken rather than risk a second tx
                    submitted = True
                    self.gate.touch(caller_id)
                    self.gate.mark_processed(agent_name)
                    logger.error(f"[FAILED] {agent_name} tx {e.tx_hash} may be pending: {e.message}")
                raise
            submitted = True
            logger.info(f"[TX] {tx_hash}")
            # Fix the slot as soon as the tx is in the mempool, before confirmation
            self.gate.touch(caller_id)
            self.gate.mark_processed(agent_name)
        finally:
            if not submitted:
                self.gate.release(agent_name)

        confirmation = await self._confirm(agent_name, tx_hash)
        logger.info(f"[CONFIRMED] {agent_name} in block {confirmation.block_number}")
        return RegistrationResult(
            name=agent_name,
            platforms=platforms,
            urls=urls,
            tx_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
            unverified=unverified,
        )

    async def _verify(self, claims: List[PlatformClaim]):
        pairs = []
        for claim in claims:
            platform = (claim.platform or "").strip()
            handle = (claim.handle or "").strip()
            # A bare "@" is as empty as a blank handle
            if not platform or not handle.lstrip("@"):
                continue
            pairs.append((platform, handle))
        results = await self.verifiers.verify_claims(pairs)

        platforms: List[str] = []
        urls: List[str] = []
        unverified: List[str] = []
        for platform, result in results:
            if not result.valid:
                if result.unavailable:
                    raise ExternalUnavailableError(f"{platform}: {result.error}")
                raise ValidationError(f"{platform}: {result.error}")
            platforms.append(platform)
            urls.append(result.url)
            if result.unverified:
                unverified.append(platform)

        if not platforms:
            raise ValidationError("No valid platforms provided")
        return platforms, urls, unverified

    async def _reconcile(self, agent_name: str) -> None:
        """Refuse names already on-chain in any casing.

        The contract's ``lookup`` is an exact match, so a miss on the name and
        its lower-cased form falls back to scanning the registered names.
        """
        if not self.directory.has_sponsor:
            raise SponsorNotConfiguredError("Sponsor wallet not configured")

        candidates = [agent_name]
        if agent_name.lower() != agent_name:
            candidates.append(agent_name.lower())
        for candidate in candidates:
            existing = await self.directory.lookup(candidate)
            if existing is not None:
                self._already_registered(agent_name)

        wanted = agent_name.lower()
        total = await self.directory.count()
        for offset in range(0, total, SCAN_PAGE_SIZE):
            names = await self.directory.get_agent_names(offset, SCAN_PAGE_SIZE)
            if any(n.lower() == wanted for n in names):
                self._already_registered(agent_name)

    def _already_registered(self, agent_name: str) -> None:
        self.gate.mark_processed(agent_name)
        raise ConflictError("This agent is already registered")

    async def _check_funds(self) -> int:
        fee = await self.directory.registration_fee()
        balance = await self.directory.wallet_balance()
        needed = fee + self.gas_buffer_wei
        if balance < needed:
            logger.error(
                f"Sponsor {self.directory.sponsor_address} underfunded: balance {balance} wei, "
                f"needs {needed} wei (fee {fee} + gas buffer {self.gas_buffer_wei})"
            )
            raise FundingError(
                "Sponsor wallet needs funding. Please try again later or use the wallet registration."
            )
        return fee

    async def _confirm(self, agent_name: str, tx_hash: str) -> Confirmation:
        try:
            return await self.directory.confirm(tx_hash, timeout=self.confirm_timeout)
        except ChainError as e:
            logger.error(f"[FAILED] {agent_name} tx {tx_hash}: {e.message}")
            raise
        except asyncio.CancelledError:
            logger.error(f"[PENDING] confirmation of {agent_name} abandoned, tx {tx_hash} still pending")
            raise
