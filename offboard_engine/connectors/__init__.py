"""
Connectors Package for the Offboard Engine.

This package provides the directory, mailbox and licensing integrations
the engine consumes, plus the simulated backend used in simulation mode.
"""

from .base_connector import BaseConnector, ConnectorResult, MockConnector


def build_connector(config) -> BaseConnector:
    """
    Build the connector for a configuration.

    Simulation mode gets the fixture-seeded MockConnector; otherwise a
    GraphConnector for the configured tenant.
    """
    if config.simulation:
        return MockConnector.with_fixtures(config.eligibility_scope, config.license_group_ids)

    from .graph_connector import GraphConnector

    return GraphConnector(config.connector)


__all__ = [
    "BaseConnector",
    "ConnectorResult",
    "MockConnector",
    "build_connector",
]
