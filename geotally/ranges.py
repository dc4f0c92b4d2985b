from __future__ import annotations

import csv
import ipaddress
import logging
from bisect import bisect_right
from pathlib import Path
from typing import Iterable, Iterator

import maxminddb

from geotally.errors import DatasetError
from geotally.models import GeoRange, IPAddress

logger = logging.getLogger(__name__)


def _parse_country(raw: str) -> str:
    code = raw.strip().upper()
    if len(code) != 2 or not code.isalpha():
        raise ValueError(f"invalid country code {raw!r}")
    return code


def _unmap(ip: IPAddress) -> IPAddress:
    """Collapse an IPv4-mapped IPv6 address (::ffff:a.b.c.d) to plain IPv4."""
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class _FamilyTable:
    """Sorted, non-overlapping ranges of one address family as parallel arrays."""

    __slots__ = ("starts", "ends", "codes")

    def __init__(self) -> None:
        self.starts: list[int] = []
        self.ends: list[int] = []
        self.codes: list[str] = []

    def append(self, r: GeoRange) -> None:
        start, end = int(r.start_ip), int(r.end_ip)
        if self.ends:
            if start < self.starts[-1]:
                raise DatasetError(f"ranges not sorted: {r.start_ip} follows a later start")
            if start <= self.ends[-1]:
                raise DatasetError(f"overlapping ranges at {r.start_ip}")
        self.starts.append(start)
        self.ends.append(end)
        self.codes.append(r.country_code)

    def lookup(self, value: int) -> str | None:
        i = bisect_right(self.starts, value) - 1
        if i < 0 or value > self.ends[i]:
            return None
        return self.codes[i]


class RangeIndex:
    """Immutable in-memory IP range -> country index, one table per family.

    Built once at startup. Lookups only read the tables, so a single index
    can be shared by every request without locking.
    """

    def __init__(self, ranges: Iterable[GeoRange]) -> None:
        self._tables = {4: _FamilyTable(), 6: _FamilyTable()}
        for r in ranges:
            if r.start_ip.version != r.end_ip.version:
                raise DatasetError(f"mixed address families in range {r.start_ip}-{r.end_ip}")
            if r.start_ip > r.end_ip:
                raise DatasetError(f"range start {r.start_ip} is after end {r.end_ip}")
            self._tables[r.version].append(r)

    @classmethod
    def load(cls, path: str | Path) -> RangeIndex:
        """Read a dataset file fully into memory.

        ``*.mmdb`` files are read as MaxMind country databases, anything else
        as a ``start_ip,end_ip,country_code`` CSV. Raises DatasetError when the
        file cannot be read or is structurally invalid.
        """
        p = Path(path)
        if not p.is_file():
            raise DatasetError(f"dataset not found: {p}")
        if p.suffix.lower() == ".mmdb":
            index = cls(_read_mmdb(p))
        else:
            index = cls(_read_csv(p))
        logger.info(
            "Loaded %d IPv4 and %d IPv6 ranges from %s",
            index.counts[4], index.counts[6], p,
        )
        return index

    @property
    def counts(self) -> dict[int, int]:
        return {family: len(t.starts) for family, t in self._tables.items()}

    def __len__(self) -> int:
        return sum(self.counts.values())

    def lookup(self, ip: IPAddress) -> str | None:
        """Return the country covering ``ip``, or None if no range does."""
        ip = _unmap(ip)
        return self._tables[ip.version].lookup(int(ip))


def _read_csv(path: Path) -> Iterator[GeoRange]:
    try:
        f = path.open(newline="", encoding="utf-8")
    except OSError as exc:
        raise DatasetError(f"cannot read dataset {path}: {exc}") from exc

    with f:
        first_record = True
        try:
            for lineno, row in enumerate(csv.reader(f), start=1):
                if not row or not "".join(row).strip() or row[0].lstrip().startswith("#"):
                    continue
                header_allowed, first_record = first_record, False
                if len(row) != 3:
                    raise DatasetError(f"{path}:{lineno}: expected 3 columns, got {len(row)}")
                try:
                    start = ipaddress.ip_address(row[0].strip())
                except ValueError:
                    if header_allowed:
                        continue  # header
                    raise DatasetError(f"{path}:{lineno}: invalid start address {row[0]!r}") from None
                try:
                    end = ipaddress.ip_address(row[1].strip())
                    country = _parse_country(row[2])
                except ValueError as exc:
                    raise DatasetError(f"{path}:{lineno}: {exc}") from None
                yield GeoRange(start, end, country)
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise DatasetError(f"cannot read dataset {path}: {exc}") from exc


def _record_country(record) -> str | None:
    if not isinstance(record, dict):
        return None
    for key in ("country", "registered_country"):
        code = (record.get(key) or {}).get("iso_code")
        if code:
            return code
    return None


def _read_mmdb(path: Path) -> list[GeoRange]:
    try:
        reader = maxminddb.open_database(str(path))
    except (OSError, ValueError, maxminddb.InvalidDatabaseError) as exc:
        raise DatasetError(f"cannot open MaxMind database {path}: {exc}") from exc

    ranges: list[GeoRange] = []
    skipped = 0
    with reader:
        try:
            for network, record in reader:
                network = ipaddress.ip_network(network)
                code = _record_country(record)
                if code is None:
                    skipped += 1
                    continue
                try:
                    country = _parse_country(code)
                except ValueError as exc:
                    raise DatasetError(f"{path}: {network}: {exc}") from None
                ranges.append(GeoRange(network.network_address, network.broadcast_address, country))
        except maxminddb.InvalidDatabaseError as exc:
            raise DatasetError(f"corrupt MaxMind database {path}: {exc}") from exc
    if skipped:
        logger.debug("Skipped %d networks without a country in %s", skipped, path)
    # Tree order already walks addresses in order; sort by family first.
    ranges.sort(key=lambda r: (r.version, int(r.start_ip)))
    return ranges
