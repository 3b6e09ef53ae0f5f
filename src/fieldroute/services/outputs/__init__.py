"""Run output serializers."""

from .mileage_formatter import mileage_report_to_csv, mileage_report_to_json

__all__ = ["mileage_report_to_csv", "mileage_report_to_json"]
