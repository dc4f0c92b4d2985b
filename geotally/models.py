from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import NamedTuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True, slots=True)
class GeoRange:
    """A contiguous, inclusive block of addresses assigned to one country."""

    start_ip: IPAddress
    end_ip: IPAddress
    country_code: str  # ISO-3166-1 alpha-2, upper case

    @property
    def version(self) -> int:
        return self.start_ip.version


class CountryCount(NamedTuple):
    country_code: str
    count: int
