"""
Platform verifiers for sponsored registration.

Each verifier turns a claimed handle into a canonical profile URL and an
existence judgment, making at most one outbound HTTP call. Only an explicit
"not found" from a reachable service rejects a claim; anything inconclusive
(timeout, transport error, unexpected status) passes as unverified unless the
platform is configured fail-closed.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

logger = logging.getLogger("agent_directory.verifiers")

NOT_FOUND_STATUSES = (404, 410)


@dataclass
class VerificationResult:
    valid: bool
    url: Optional[str] = None
    error: Optional[str] = None
    unverified: bool = False
    unavailable: bool = False
    note: Optional[str] = None


class PlatformVerifier:
    """Base strategy. Subclasses implement ``verify``."""

    name = ""
    aliases: Tuple[str, ...] = ()
    note = ""

    def __init__(self, fail_open: bool = True):
        self.fail_open = fail_open

    def profile_url(self, handle: str) -> str:
        raise NotImplementedError

    async def verify(self, handle: str, http: httpx.AsyncClient) -> VerificationResult:
        raise NotImplementedError

    def inconclusive(self, handle: str, reason: str) -> VerificationResult:
        url = self.profile_url(handle)
        if self.fail_open:
            logger.warning(f"{self.name} verification failed for {handle} ({reason}), allowing unverified")
            return VerificationResult(valid=True, url=url, unverified=True)
        logger.warning(f"{self.name} verification failed for {handle} ({reason}), platform is fail-closed")
        return VerificationResult(
            valid=False,
            url=url,
            error=f"{self.name} verification unavailable, try again later",
            unavailable=True,
        )


class ProbeVerifier(PlatformVerifier):
    """Checks that a profile exists with a single HTTP request."""

    method = "GET"
    headers: Dict[str, str] = {}
    not_found_error = "Profile not found"

    def probe_url(self, handle: str) -> str:
        raise NotImplementedError

    async def verify(self, handle: str, http: httpx.AsyncClient) -> VerificationResult:
        try:
            resp = await http.request(self.method, self.probe_url(handle), headers=self.headers)
        except httpx.HTTPError as e:
            return self.inconclusive(handle, f"{type(e).__name__}: {e}")

        if resp.is_success:
            return VerificationResult(valid=True, url=self.profile_url(handle))
        if resp.status_code in NOT_FOUND_STATUSES:
            return VerificationResult(valid=False, url=self.profile_url(handle), error=self.not_found_error)
        return self.inconclusive(handle, f"HTTP {resp.status_code}")


class MoltbookVerifier(ProbeVerifier):
    name = "moltbook"
    note = "Profile existence verified"
    method = "HEAD"
    not_found_error = "Moltbook profile not found"

    def probe_url(self, handle: str) -> str:
        return f"https://www.moltbook.com/u/{quote(handle, safe='')}"

    def profile_url(self, handle: str) -> str:
        return f"https://moltbook.com/u/{handle}"


class GitHubVerifier(ProbeVerifier):
    name = "github"
    note = "User existence verified"
    headers = {"Accept": "application/json"}
    not_found_error = "GitHub user not found"

    def probe_url(self, handle: str) -> str:
        return f"https://api.github.com/users/{quote(handle, safe='')}"

    def profile_url(self, handle: str) -> str:
        return f"https://github.com/{handle}"


class UnverifiedHandleVerifier(PlatformVerifier):
    """Platforms with no public existence check. Formats the URL and passes."""

    url_template = "{handle}"
    strip_at = False

    def __init__(self, name: str, url_template: str, note: str,
                 aliases: Sequence[str] = (), strip_at: bool = False):
        super().__init__(fail_open=True)
        self.name = name
        self.url_template = url_template
        self.note = note
        self.aliases = tuple(aliases)
        self.strip_at = strip_at

    def profile_url(self, handle: str) -> str:
        if self.strip_at and handle.startswith("@"):
            handle = handle[1:]
        return self.url_template.format(handle=handle)

    async def verify(self, handle: str, http: httpx.AsyncClient) -> VerificationResult:
        return VerificationResult(valid=True, url=self.profile_url(handle), note=self.note)


class WebsiteVerifier(PlatformVerifier):
    name = "website"
    note = "Any URL accepted"

    def profile_url(self, handle: str) -> str:
        if not handle.startswith("http"):
            return "https://" + handle
        return handle

    async def verify(self, handle: str, http: httpx.AsyncClient) -> VerificationResult:
        return VerificationResult(valid=True, url=self.profile_url(handle))


class VerifierRegistry:
    """Maps platform names (and aliases) to verifiers, with ``website`` as fallback."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self._verifiers: Dict[str, PlatformVerifier] = {}
        self._canonical: List[str] = []
        self.default: PlatformVerifier = WebsiteVerifier()

    def register(self, verifier: PlatformVerifier) -> None:
        if verifier.name not in self._canonical:
            self._canonical.append(verifier.name)
        self._verifiers[verifier.name] = verifier
        for alias in verifier.aliases:
            self._verifiers[alias] = verifier
        if verifier.name == "website":
            self.default = verifier

    def resolve(self, platform: str) -> Tuple[str, PlatformVerifier]:
        """Return the platform name to record and the verifier that handles it.

        Aliases record their canonical name. Unknown platforms keep their own
        name but are checked as websites.
        """
        key = platform.strip().lower()
        verifier = self._verifiers.get(key)
        if verifier is None:
            return key, self.default
        return verifier.name, verifier

    def platforms(self) -> List[str]:
        return list(self._verifiers)

    def describe(self) -> Dict[str, str]:
        notes = {}
        for key, verifier in self._verifiers.items():
            notes[key] = verifier.note if key == verifier.name else f"Alias for {verifier.name}"
        return notes

    async def _verify_one(self, verifier: PlatformVerifier, handle: str,
                          http: httpx.AsyncClient) -> VerificationResult:
        try:
            return await asyncio.wait_for(verifier.verify(handle, http), timeout=self.timeout)
        except asyncio.TimeoutError:
            return verifier.inconclusive(handle, f"timed out after {self.timeout}s")

    async def verify(self, platform: str, handle: str) -> Tuple[str, VerificationResult]:
        results = await self.verify_claims([(platform, handle)])
        return results[0]

    async def verify_claims(
        self, claims: Iterable[Tuple[str, str]],
    ) -> List[Tuple[str, VerificationResult]]:
        """Probe every claim concurrently. Results keep the order of ``claims``."""
        resolved = []
        for platform, handle in claims:
            name, verifier = self.resolve(platform)
            resolved.append((name, verifier, handle.strip()))
        if not resolved:
            return []

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as http:
            results = await asyncio.gather(*[
                self._verify_one(verifier, handle, http)
                for _, verifier, handle in resolved
            ])
        return [(name, result) for (name, _, _), result in zip(resolved, results)]


def build_default_registry(
    timeout: float = 10.0,
    fail_closed: Iterable[str] = (),
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VerifierRegistry:
    closed = {p.lower() for p in fail_closed}
    registry = VerifierRegistry(timeout=timeout, transport=transport)
    registry.register(MoltbookVerifier(fail_open="moltbook" not in closed))
    registry.register(UnverifiedHandleVerifier(
        "x", "https://x.com/{handle}",
        note="X profile not verified - please ensure it exists",
        aliases=("twitter",), strip_at=True,
    ))
    registry.register(UnverifiedHandleVerifier(
        "discord", "discord:{handle}",
        note="Discord handle stored but not verified",
    ))
    registry.register(GitHubVerifier(fail_open="github" not in closed))
    registry.register(WebsiteVerifier())
    registry.register(UnverifiedHandleVerifier(
        "farcaster", "https://warpcast.com/{handle}",
        note="Farcaster profile not verified",
    ))
    registry.register(UnverifiedHandleVerifier(
        "telegram", "https://t.me/{handle}",
        note="Telegram handle not verified", strip_at=True,
    ))
    return registry
