"""
Shared fixtures for the Offboard Engine tests.

Every fixture writes under pytest's tmp_path and talks to the in-memory
MockConnector; no test touches the network.
"""

import pytest

from offboard_engine.config import EngineConfig
from offboard_engine.connectors import MockConnector
from offboard_engine.engine import FrozenClock

SCOPE = "au-disabled-users"
QUARANTINE = "au-quarantine"
LICENSE_GROUP = "grp-license-e3"
MFA_GROUP = "grp-mfa"


@pytest.fixture
def clock():
    """Clock fixed at 2026-01-15 02:00 UTC until advanced."""
    return FrozenClock()


@pytest.fixture
def engine_config(tmp_path):
    """Configuration with every document under tmp_path."""
    return EngineConfig(
        eligibility_scope=SCOPE,
        quarantine_scope=QUARANTINE,
        tracked_set_path=tmp_path / "state" / "tracked.txt",
        audit_trail_path=tmp_path / "audit" / "offboarded_users.json",
        backup_dir=tmp_path / "backups",
        log_dir=tmp_path / "logs",
        license_group_ids=[LICENSE_GROUP],
        mfa_group_ids=[MFA_GROUP],
        upn_domain="contoso.com",
    )


@pytest.fixture
def connector():
    """Empty directory with the license and MFA groups present."""
    mock = MockConnector()
    mock.add_group(LICENSE_GROUP, display_name="License E3")
    mock.add_group(MFA_GROUP, display_name="MFA Enforced")
    return mock
