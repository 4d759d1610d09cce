from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
from bs4 import BeautifulSoup

from errors import NavigationFailure

DETAIL_MARKER = "detail?id"
EXTEND_MARKER = "freevps/extend/index?id_vps"


@dataclass
class ServerRow:
    expire_date: str | None
    detail_href: str | None


def find_free_server_row(
    html: str,
    marker_class: str = "freeServerIco",
    expiry_class: str = "contract__term",
    detail_prefix: str = "/xapanel/xvps/server/detail?id=",
) -> ServerRow | None:
    """Find the first table row holding the free-plan icon."""
    soup = BeautifulSoup(html, 'html.parser')

    for row in soup.find_all('tr'):
        if row.find(class_=marker_class) is None:
            continue
        term = row.find(class_=expiry_class)
        link = row.find('a', href=lambda h: bool(h) and h.startswith(detail_prefix))
        return ServerRow(
            expire_date=term.get_text(strip=True) if term else None,
            detail_href=link['href'] if link else None,
        )

    return None


def tomorrow_in(tz_name: str, now: datetime) -> str:
    """The date 24h after ``now`` as YYYY-MM-DD in the given time zone."""
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return (now + timedelta(days=1)).astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d")


def renewal_url(detail_url: str) -> str:
    """Map a server detail URL onto the free-plan extension page.

    ``.../server/detail?id=123`` -> ``.../server/freevps/extend/index?id_vps=123``
    """
    if DETAIL_MARKER not in detail_url:
        raise NavigationFailure(f"cannot derive renewal URL from {detail_url!r}")
    return detail_url.replace(DETAIL_MARKER, EXTEND_MARKER, 1)
