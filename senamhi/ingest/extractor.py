"""Extract per-location forecasts from the SENAMHI forecast page HTML.

The page renders one ``<td>`` per location inside ``tbody.buscar``; each cell
holds the location name and one ``.row.m-3`` per forecast day. The markup is
not under our control, so every lookup is optional: a missing element yields
``None`` for that field and never aborts the rest of the record.
"""

import logging

from bs4 import BeautifulSoup, Tag

from senamhi.models.forecast import ForecastDay, LocationForecast

logger = logging.getLogger(__name__)

BS_PARSER = "lxml"

LOCATION_BLOCK_SELECTOR = "tbody.buscar > tr > td"
NAME_SELECTORS = (".nameCity a", ".nameCity")
FORECAST_ROW_SELECTOR = ".row.m-3"
DATE_SELECTOR = ".col-sm-3"
HIGH_TEMP_SELECTOR = ".text-danger"
LOW_TEMP_SELECTOR = ".text-primary"
DESCRIPTION_SELECTOR = ".col-sm-6"


def extract_locations(html: str) -> list[LocationForecast]:
    """Parse the page into location forecasts, in document order.

    Blocks without a name are skipped; rows are always kept, even when none
    of their fields can be read.
    """
    soup = BeautifulSoup(html, BS_PARSER)
    blocks = soup.select(LOCATION_BLOCK_SELECTOR)
    if not blocks:
        logger.warning("No location blocks matched %r", LOCATION_BLOCK_SELECTOR)
        return []

    locations: list[LocationForecast] = []
    for block in blocks:
        name = _extract_name(block)
        if not name:
            continue
        days = [_extract_day(row) for row in block.select(FORECAST_ROW_SELECTOR)]
        locations.append(LocationForecast(name=name, days=days))

    logger.debug(
        "Extracted %d locations from %d blocks", len(locations), len(blocks)
    )
    return locations


def _extract_name(block: Tag) -> str | None:
    # An empty primary match falls through to the next selector.
    for selector in NAME_SELECTORS:
        text = _select_text(block, selector)
        if text:
            return text
    return None


def _extract_day(row: Tag) -> ForecastDay:
    return ForecastDay(
        date=_select_text(row, DATE_SELECTOR),
        high_temp=_select_text(row, HIGH_TEMP_SELECTOR),
        low_temp=_select_text(row, LOW_TEMP_SELECTOR),
        description=_select_text(row, DESCRIPTION_SELECTOR),
    )


def _select_text(root: Tag, selector: str) -> str | None:
    """Trimmed text of the first match, or None when nothing matches."""
    element = root.select_one(selector)
    if element is None:
        return None
    return element.get_text().strip()
