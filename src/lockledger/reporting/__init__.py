"""Simulation result export."""

from .export import export_csv, export_json, history_frame

__all__ = ["export_csv", "export_json", "history_frame"]
