from __future__ import annotations

import io
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from emergency_dispatch import config
from emergency_dispatch.dispatch import DispatchDecision
from emergency_dispatch.models import Incident

COLUMNS = [
    "incident_id",
    "incident_type",
    "severity",
    "unit_id",
    "unit_type",
    "response_time",
    "response_distance",
    "successful",
    "timestamp",
]
PERCENTILES = (("50th", 0.50), ("90th", 0.90), ("95th", 0.95), ("99th", 0.99))


def nearest_rank(values: List[float], fraction: float) -> float:
    """Smallest value with at least `fraction` of the samples at or below it."""
    return float(np.quantile(values, fraction, method="inverted_cdf"))


class PerformanceMetrics:
    """Dispatch outcome log. Response time is the path cost in minutes."""

    def __init__(self) -> None:
        self._records: List[dict] = []
        self._lock = threading.Lock()

    def record_dispatch(self, decision: DispatchDecision, distance: Optional[float] = None) -> None:
        incident, unit = decision.incident, decision.unit
        record = {
            "incident_id": incident.incident_id,
            "incident_type": incident.incident_type.value,
            "severity": incident.severity.name,
            "unit_id": unit.unit_id,
            "unit_type": unit.unit_type.value,
            "response_time": decision.path.total_cost,
            "response_distance": decision.path.total_cost if distance is None else distance,
            "successful": True,
            "timestamp": datetime.now(),
        }
        with self._lock:
            self._records.append(record)

    def record_failed_dispatch(self, incident: Incident) -> None:
        record = {
            "incident_id": incident.incident_id,
            "incident_type": incident.incident_type.value,
            "severity": incident.severity.name,
            "unit_id": None,
            "unit_type": None,
            "response_time": math.nan,
            "response_distance": math.nan,
            "successful": False,
            "timestamp": datetime.now(),
        }
        with self._lock:
            self._records.append(record)

    @property
    def total_incidents(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def successful_dispatches(self) -> int:
        with self._lock:
            return sum(1 for record in self._records if record["successful"])

    @property
    def failed_dispatches(self) -> int:
        return self.total_incidents - self.successful_dispatches

    @property
    def success_rate(self) -> float:
        total = self.total_incidents
        return self.successful_dispatches / total if total else 0.0

    def _successful_column(self, column: str) -> List[float]:
        with self._lock:
            return [record[column] for record in self._records if record["successful"]]

    @property
    def average_response_time(self) -> float:
        times = self._successful_column("response_time")
        return sum(times) / len(times) if times else 0.0

    @property
    def average_response_distance(self) -> float:
        distances = self._successful_column("response_distance")
        return sum(distances) / len(distances) if distances else 0.0

    def response_time_percentiles(self) -> Dict[str, float]:
        times = self._successful_column("response_time")
        if not times:
            return {}
        return {label: nearest_rank(times, fraction) for label, fraction in PERCENTILES}

    def to_dataframe(self) -> pd.DataFrame:
        with self._lock:
            return pd.DataFrame(list(self._records), columns=COLUMNS)

    def by_unit_type(self) -> pd.DataFrame:
        df = self.to_dataframe()
        if not df.empty:
            df = df[df["successful"].astype(bool)]
        if df.empty:
            return pd.DataFrame(columns=["dispatches", "avg_response_time", "avg_response_distance"])
        return df.groupby("unit_type").agg(
            dispatches=("incident_id", "count"),
            avg_response_time=("response_time", "mean"),
            avg_response_distance=("response_distance", "mean"),
        )

    def by_severity(self) -> pd.DataFrame:
        df = self.to_dataframe()
        if df.empty:
            return pd.DataFrame(columns=["incidents", "success_rate", "avg_response_time"])
        return df.groupby("severity").agg(
            incidents=("incident_id", "count"),
            success_rate=("successful", "mean"),
            avg_response_time=("response_time", "mean"),
        )

    def export_csv(self, path: Union[str, Path, None] = None) -> Path:
        target = Path(path) if path is not None else config.EXPORT_DIR / "dispatch_metrics.csv"
        target.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(target, index=False)
        return target

    def generate_report(self) -> str:
        lines = [
            "=== Performance Metrics Report ===",
            f"Total incidents: {self.total_incidents}",
            f"Successful dispatches: {self.successful_dispatches}",
            f"Failed dispatches: {self.failed_dispatches}",
            f"Success rate: {self.success_rate * 100:.1f}%",
            f"Average response time: {self.average_response_time:.2f} minutes",
            f"Average response distance: {self.average_response_distance:.2f}",
        ]

        percentiles = self.response_time_percentiles()
        if percentiles:
            lines.append("Response time percentiles:")
            lines.extend(f"  {label} percentile: {value:.2f} minutes" for label, value in percentiles.items())

        by_type = self.by_unit_type()
        if not by_type.empty:
            lines.append("By unit type:")
            for unit_type, row in by_type.iterrows():
                lines.append(
                    f"  {unit_type}: {int(row['dispatches'])} dispatches, "
                    f"avg {row['avg_response_time']:.2f} minutes"
                )
        return "\n".join(lines)

    def build_pdf_summary(self) -> bytes:
        buff = io.BytesIO()
        pdf = canvas.Canvas(buff, pagesize=letter)
        width, height = letter

        y = height - 40
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(40, y, "Emergency Dispatch Performance Summary")
        y -= 18
        pdf.setFont("Helvetica", 10)
        pdf.drawString(40, y, f"Generated: {datetime.now().isoformat(timespec='seconds')}")
        y -= 20

        pdf.setStrokeColor(colors.darkblue)
        pdf.rect(35, y - 75, width - 70, 70, stroke=1, fill=0)
        pdf.setFont("Helvetica", 9)
        pdf.drawString(45, y - 15, f"Incidents: {self.total_incidents}  |  Success rate: {self.success_rate * 100:.1f}%")
        pdf.drawString(45, y - 30, f"Average response time: {self.average_response_time:.2f} minutes")
        pdf.drawString(45, y - 45, f"Average response distance: {self.average_response_distance:.2f}")
        percentiles = self.response_time_percentiles()
        if percentiles:
            pdf.drawString(45, y - 60, "  ".join(f"p{label[:-2]}: {value:.2f}" for label, value in percentiles.items()))
        y -= 90

        for record in self.to_dataframe().itertuples(index=False):
            if y < 60:
                pdf.showPage()
                y = height - 40
                pdf.setFont("Helvetica", 9)
            outcome = f"{record.unit_id} in {record.response_time:.2f} min" if record.successful else "no unit"
            pdf.drawString(45, y, f"{record.incident_id} | {record.incident_type} | {record.severity} | {outcome}")
            y -= 14

        pdf.save()
        buff.seek(0)
        return buff.read()
