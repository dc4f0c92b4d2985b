from __future__ import annotations

from typing import Iterable

from geotally.models import CountryCount


def render_analytics(rows: Iterable[CountryCount]) -> str:
    """Render counters as ``"{country}: {count}"`` lines, busiest first."""
    ordered = sorted(rows, key=lambda r: (-r.count, r.country_code))
    return "".join(f"{r.country_code}: {r.count}\n" for r in ordered)
