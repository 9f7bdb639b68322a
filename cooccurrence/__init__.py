"""Simulation and model specification for two-species co-occurrence."""
