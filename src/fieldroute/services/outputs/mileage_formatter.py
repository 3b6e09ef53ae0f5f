"""Serializers for mileage run outputs."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict

from ..routing.models import MileageReport


def mileage_report_to_json(report: MileageReport) -> dict:
    return asdict(report)


def mileage_report_to_csv(report: MileageReport) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route",
        "day_code",
        "day_label",
        "iso_week",
        "week_key",
        "status",
        "sequence",
        "location_id",
        "client_code",
        "name",
        "visit_minutes",
        "distance_km",
        "drive_minutes",
        "total_minutes",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for combination in report.combinations:
        for sequence, stop in enumerate(combination.stops, start=1):
            writer.writerow(
                {
                    "route": combination.route,
                    "day_code": combination.day_code,
                    "day_label": combination.day_label,
                    "iso_week": combination.iso_week,
                    "week_key": combination.week_key,
                    "status": combination.status,
                    "sequence": sequence,
                    "location_id": stop.location_id,
                    "client_code": stop.client_code,
                    "name": stop.name,
                    "visit_minutes": stop.visit_minutes,
                    "distance_km": combination.distance_km,
                    "drive_minutes": combination.drive_minutes,
                    "total_minutes": combination.total_minutes,
                }
            )
    return buffer.getvalue()
