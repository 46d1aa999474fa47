from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# ---- Registration ----

class PlatformClaimIn(BaseModel):
    platform: Optional[str] = Field(None, max_length=64)
    handle: Optional[str] = Field(None, max_length=256)


class SponsoredRegistrationRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=256)
    platforms: Optional[List[PlatformClaimIn]] = None


class LegacyRegistrationRequest(BaseModel):
    moltbook_username: Optional[str] = Field(None, max_length=256)


class RegisteredAgent(BaseModel):
    name: str
    platforms: List[str]
    urls: List[str]
    unverified: List[str] = []


class RegistrationResponse(BaseModel):
    success: bool = True
    message: str
    agent: RegisteredAgent
    txHash: str
    blockNumber: int
    explorerUrl: str
    directoryUrl: str


class SupportedPlatformsResponse(BaseModel):
    platforms: List[str]
    notes: Dict[str, str]


# ---- Directory reads ----

class AgentRecordResponse(BaseModel):
    name: str
    platforms: List[str]
    urls: List[str]
    registrant: str
    registeredAt: str
    lastActive: Optional[str] = None


class StatsResponse(BaseModel):
    registeredAgents: int
    contractAddress: str
    network: str
    sponsoredRegistration: bool = True


class AgentListResponse(BaseModel):
    success: bool = True
    total: int
    offset: int
    limit: int
    count: int
    # Entries that failed to load are {"name", "error"}
    agents: List[Dict[str, Any]]


class PlatformAgentsResponse(BaseModel):
    success: bool = True
    platform: str
    count: int
    agents: List[Dict[str, Any]]


class PlatformCount(BaseModel):
    platform: str
    agentCount: int


class PlatformsResponse(BaseModel):
    success: bool = True
    totalPlatforms: int
    platforms: List[PlatformCount]


# ---- Capabilities ----

class CapabilitiesUpdate(BaseModel):
    capabilities: List[Any]
    description: Optional[str] = Field(None, max_length=2000)


class CapabilitiesWriteResponse(BaseModel):
    success: bool = True
    agent: str
    capabilities: List[str]
    description: Optional[str] = None


class CapabilityEntryResponse(BaseModel):
    success: bool = True
    agent: str
    capabilities: List[str]
    description: Optional[str] = None
    updatedAt: str


class CapabilityMatch(BaseModel):
    name: str
    capabilities: List[str]
    description: Optional[str] = None
    matchedOn: List[str]


class FindResponse(BaseModel):
    success: bool = True
    query: str
    count: int
    agents: List[CapabilityMatch]


class CapabilitySummary(BaseModel):
    capability: str
    count: int
    agents: List[str]


class CapabilitiesResponse(BaseModel):
    success: bool = True
    totalCapabilities: int
    capabilities: List[CapabilitySummary]
