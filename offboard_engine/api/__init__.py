"""REST API for the Offboard Engine."""
