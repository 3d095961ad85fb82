"""Shared: enums, utilities and telemetry used across layers."""
