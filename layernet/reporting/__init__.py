"""Reporting utilities for layernet runs."""

from .artifacts import load_network, save_network, write_manifest
from .metrics import CsvSink, JsonlSink, read_jsonl
from .plots import PlotAdapter
from .summary import build_summary, write_summary

__all__ = [
    "CsvSink",
    "JsonlSink",
    "PlotAdapter",
    "build_summary",
    "load_network",
    "read_jsonl",
    "save_network",
    "write_manifest",
    "write_summary",
]
