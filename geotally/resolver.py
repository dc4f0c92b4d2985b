from __future__ import annotations

import ipaddress

from geotally.models import IPAddress
from geotally.ranges import RangeIndex


class Resolver:
    """Turns a client address into an ISO country code using a RangeIndex."""

    def __init__(self, index: RangeIndex) -> None:
        self.index = index

    def resolve(self, ip: str | IPAddress) -> str | None:
        """Return the country for ``ip`` or None when no range covers it.

        Raises ValueError if ``ip`` is a string that is not an IP address.
        """
        if isinstance(ip, str):
            ip = ipaddress.ip_address(ip.strip())
        return self.index.lookup(ip)
