"""Scan pipeline driver."""

from .scanner import ScanOrchestrator, ScanState
