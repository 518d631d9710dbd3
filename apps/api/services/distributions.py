"""Distribution lookup and download backend selection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.distribution import Distribution


LOCAL_NETWORK_AREA = "global"
REGIONAL_NETWORK_AREAS = ("CN", "RU")


@dataclass(frozen=True)
class LocalBackend:
    """Files served from the primary object store."""

    is_regional: bool = False
    region: Optional[str] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class RegionalProxyBackend:
    """Files served from a region-specific server; downloads cost more."""

    region: str
    base_url: Optional[str] = None
    is_regional: bool = True


DistributionBackend = Union[LocalBackend, RegionalProxyBackend]


def normalize_network_area(value: Optional[str]) -> str:
    area = (value or "").strip().upper()
    if area in REGIONAL_NETWORK_AREAS:
        return area
    return LOCAL_NETWORK_AREA


def select_backend(
    network_area: Optional[str],
    regional_base_urls: Optional[Mapping[str, str]] = None,
) -> DistributionBackend:
    """Choose the download backend for a distribution's network area."""
    area = normalize_network_area(network_area)
    if area == LOCAL_NETWORK_AREA:
        return LocalBackend()
    base_url = (regional_base_urls or {}).get(area)
    return RegionalProxyBackend(region=area, base_url=base_url.rstrip("/") if base_url else None)


@dataclass(frozen=True)
class DistributionRef:
    id: str
    code: str
    owner_id: str
    is_active: bool
    backend: DistributionBackend

    @property
    def is_regional(self) -> bool:
        return self.backend.is_regional


class DistributionDirectory:
    """Resolves distributions and attaches their backend.

    Regional base URLs are passed in at construction time.
    """

    def __init__(self, regional_base_urls: Optional[Mapping[str, str]] = None):
        self._regional_base_urls = dict(regional_base_urls or {})

    async def get_distribution(self, db: AsyncSession, distribution_id: str) -> Optional[DistributionRef]:
        result = await db.execute(select(Distribution).where(Distribution.id == distribution_id))
        distribution = result.scalar_one_or_none()
        if distribution is None:
            return None
        return DistributionRef(
            id=distribution.id,
            code=distribution.code,
            owner_id=distribution.owner_id,
            is_active=bool(distribution.is_active),
            backend=select_backend(distribution.network_area, self._regional_base_urls),
        )
