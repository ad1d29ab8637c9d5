"""Command line interface for the Offboard Engine."""
