"""Registry result-table parser: converts payload rows into Record objects.

Design rules:
  - Every structural lookup walks a fallback tuple (selectors.ROW_SELECTORS).
  - Rows that are too short or carry a placeholder name are dropped.
  - No rows at all is a valid, empty result, never an error.
"""

import logging

from bs4 import BeautifulSoup, Tag

from certwatch.core.schemas import Record
from certwatch.platforms.registry.selectors import (
    DATE_COLUMN,
    FATHER_COLUMN,
    GENDER_COLUMN,
    MIN_COLUMNS,
    MOTHER_COLUMN,
    NAME_COLUMN,
    ROW_SELECTORS,
)

logger = logging.getLogger(__name__)


def is_placeholder(name: str) -> bool:
    """True for empty names and the registry's dotted "no data" markers."""
    stripped = name.strip()
    return not stripped or set(stripped) == {"."}


class RecordExtractor:
    """Parses the HTML fragment returned for one date."""

    def __init__(self, row_selectors: tuple[str, ...] = ROW_SELECTORS) -> None:
        self._row_selectors = row_selectors

    def extract(self, payload: str) -> list[Record]:
        soup = BeautifulSoup(payload, "html.parser")
        rows = self._find_rows(soup)

        records: list[Record] = []
        for row in rows:
            record = self._parse_row(row)
            if record is not None:
                records.append(record)

        logger.debug("Parsed %d records from %d rows", len(records), len(rows))
        return records

    def _find_rows(self, soup: BeautifulSoup) -> list[Tag]:
        """Find result rows using fallback selectors."""
        for selector in self._row_selectors:
            rows = soup.select(selector)
            if rows:
                logger.debug("Found %d rows with selector '%s'", len(rows), selector)
                return rows
        logger.debug("No rows found with any selector")
        return []

    @staticmethod
    def _parse_row(row: Tag) -> Record | None:
        cells = row.find_all("td", recursive=False)
        if len(cells) < MIN_COLUMNS:
            return None

        texts = [cell.get_text().strip() for cell in cells]
        name = texts[NAME_COLUMN]
        if is_placeholder(name):
            return None

        return Record(
            name=name,
            gender=texts[GENDER_COLUMN],
            date_of_death=texts[DATE_COLUMN],
            fathers_name=texts[FATHER_COLUMN],
            mothers_name=texts[MOTHER_COLUMN],
        )
