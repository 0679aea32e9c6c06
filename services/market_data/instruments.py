"""
Option instrument ids from the Dhan scrip-master CSV.
"""

import csv
import os
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

import structlog

from core.trading.models import OptionType

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("SECURITY_ID", "STRIKE_PRICE", "OPTION_TYPE")


class InstrumentMaster:
    """
    Maps (strike, option type) to the broker security id.

    Loaded once from the scrip-master CSV for the traded index. Rows without
    a security id, a numeric strike or a CE/PE option type are skipped.
    """

    def __init__(self, csv_file_path: Optional[str] = None):
        self.csv_file_path = Path(csv_file_path) if csv_file_path else None
        self._ids: Dict[Tuple[float, OptionType], str] = {}
        if self.csv_file_path is not None:
            self.load()

    def validate_file_exists(self) -> None:
        """Validate that the CSV file exists and is readable."""
        if not self.csv_file_path.exists():
            raise FileNotFoundError(f"CSV file not found: {self.csv_file_path}")

        if not self.csv_file_path.is_file():
            raise ValueError(f"Path is not a file: {self.csv_file_path}")

        if not os.access(self.csv_file_path, os.R_OK):
            raise PermissionError(f"Cannot read CSV file: {self.csv_file_path}")

    def _rows(self) -> Iterator[Dict[str, str]]:
        with open(self.csv_file_path, "r", encoding="utf-8", newline="") as file:
            reader = csv.DictReader(file)
            missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
            if missing:
                raise ValueError(f"Scrip master is missing columns: {', '.join(missing)}")
            for row in reader:
                yield row

    def load(self) -> int:
        """(Re)load the CSV. Returns the number of instruments indexed."""
        self.validate_file_exists()
        ids: Dict[Tuple[float, OptionType], str] = {}
        for row_num, row in enumerate(self._rows(), start=2):
            security_id = (row.get("SECURITY_ID") or "").strip()
            option_type = (row.get("OPTION_TYPE") or "").strip().upper()
            if not security_id or option_type not in ("CE", "PE"):
                continue
            try:
                strike = float((row.get("STRIKE_PRICE") or "").strip())
            except ValueError:
                logger.warning("Invalid strike in scrip master", row=row_num)
                continue
            ids[(strike, OptionType(option_type))] = security_id

        self._ids = ids
        logger.info("Scrip master loaded", path=str(self.csv_file_path), instruments=len(ids))
        return len(ids)

    @classmethod
    def from_mapping(cls, ids: Dict[Tuple[float, OptionType], str]) -> "InstrumentMaster":
        master = cls()
        master._ids = dict(ids)
        return master

    def security_id(self, strike: float, option_type: OptionType) -> Optional[str]:
        return self._ids.get((float(strike), option_type))

    def __len__(self) -> int:
        return len(self._ids)
