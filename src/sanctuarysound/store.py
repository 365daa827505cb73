"""
History persistence for SanctuarySound.

Keeps RT60 measurements and SPL session reports as JSON lists in a data
directory, newest first. All file access is serialized through one lock.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional

from .errors import StoreError
from .models import RT60Measurement, SPLSessionReport, to_dict

logger = logging.getLogger(__name__)

RT60_FILE = "rt60_measurements.json"
SPL_REPORTS_FILE = "spl_reports.json"


class HistoryStore:
    """Saves, lists and deletes measurement and report history by id."""

    def __init__(self, directory: Optional[str] = None):
        if directory is None:
            directory = tempfile.mkdtemp(prefix="sanctuarysound_")
        os.makedirs(directory, exist_ok=True)
        self.directory = directory
        self._lock = threading.Lock()
        logger.info(f"History store at {directory}")

    def _path(self, name: str) -> str:
        return os.path.join(self.directory, name)

    def _read(self, name: str) -> List[Dict[str, Any]]:
        path = self._path(name)
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to read {path}: {e}")
        if not isinstance(data, list):
            raise StoreError(f"Unexpected content in {path}")
        return data

    def _write(self, name: str, entries: List[Dict[str, Any]]):
        path = self._path(name)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(entries, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}")

    def _save(self, name: str, entry: Dict[str, Any]):
        with self._lock:
            entries = [e for e in self._read(name) if e.get("id") != entry["id"]]
            entries.insert(0, entry)
            self._write(name, entries)

    def _delete(self, name: str, entry_id: str) -> bool:
        with self._lock:
            entries = self._read(name)
            remaining = [e for e in entries if e.get("id") != entry_id]
            if len(remaining) == len(entries):
                return False
            self._write(name, remaining)
            return True

    # RT60 measurements

    def save_rt60_measurement(self, measurement: RT60Measurement):
        self._save(RT60_FILE, to_dict(measurement))
        logger.debug(f"Saved RT60 measurement {measurement.id}")

    def list_rt60_measurements(self) -> List[RT60Measurement]:
        with self._lock:
            return [RT60Measurement.from_dict(e) for e in self._read(RT60_FILE)]

    def get_rt60_measurement(self, measurement_id: str) -> Optional[RT60Measurement]:
        for measurement in self.list_rt60_measurements():
            if measurement.id == measurement_id:
                return measurement
        return None

    def delete_rt60_measurement(self, measurement_id: str) -> bool:
        deleted = self._delete(RT60_FILE, measurement_id)
        if deleted:
            logger.debug(f"Deleted RT60 measurement {measurement_id}")
        return deleted

    # SPL session reports

    def save_spl_report(self, report: SPLSessionReport):
        self._save(SPL_REPORTS_FILE, to_dict(report))
        logger.debug(f"Saved SPL report {report.id}")

    def list_spl_reports(self) -> List[SPLSessionReport]:
        with self._lock:
            return [SPLSessionReport.from_dict(e) for e in self._read(SPL_REPORTS_FILE)]

    def get_spl_report(self, report_id: str) -> Optional[SPLSessionReport]:
        for report in self.list_spl_reports():
            if report.id == report_id:
                return report
        return None

    def delete_spl_report(self, report_id: str) -> bool:
        deleted = self._delete(SPL_REPORTS_FILE, report_id)
        if deleted:
            logger.debug(f"Deleted SPL report {report_id}")
        return deleted
