"""Core types, exceptions, configuration and helpers for chronomem."""
