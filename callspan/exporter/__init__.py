"""Exporters for delivering span records to backends."""

from callspan.exporter.console_exporter import ConsoleExporter
from callspan.exporter.memory_exporter import InMemoryExporter
from callspan.exporter.otlp_exporter import OTLPExporter

__all__ = ["ConsoleExporter", "InMemoryExporter", "OTLPExporter"]
