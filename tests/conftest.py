"""
NFTGATE Test Fixtures
=====================

Shared pytest fixtures for the rule formatter, ruleset model, kernel
collaborators, mutation orchestrator and the Flask API.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import Mock

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


SEED_TABLES = [
    {
        "family": "inet",
        "name": "filter",
        "chains": [
            {"name": "INPUT", "type": "filter", "hook": "input", "prio": 0, "policy": "drop"},
            {"name": "OUTPUT", "type": "filter", "hook": "output", "prio": 0, "policy": "accept"},
        ],
        "rules": [
            {
                "chain": "INPUT",
                "comment": "Allow Localhost",
                "expr": [
                    {"match": {"left": {"meta": {"key": "iifname"}}, "op": "==", "right": "lo"}},
                    {"accept": None},
                ],
            },
            {
                "chain": "INPUT",
                "comment": "Web",
                "expr": [
                    {"match": {"left": {"payload": {"protocol": "tcp", "field": "dport"}},
                               "op": "==", "right": {"set": ["80", "443"]}}},
                    {"accept": None},
                ],
            },
            {"chain": "INPUT", "comment": "SSH", "statement": "tcp dport 22 accept"},
        ],
    },
]


@pytest.fixture
def test_config(tmp_path):
    """Basic test configuration."""
    return {
        "general": {
            "app_name": "NFTGATE",
            "version": "1.0.0",
            "debug": True,
            "log_level": "DEBUG"
        },
        "api": {
            "host": "127.0.0.1",
            "port": 5000,
            "secret_key": "nftgate-test-secret-key-0123456789abcdef",
            "cors_origins": "*"
        },
        "auth": {
            "enabled": False,
            "token_expiration_hours": 1,
            "users": {
                "admin": {"password": "adminpw", "role": "admin"},
                "operator": {"password": "operatorpw", "role": "operator"},
                "viewer": {"password": "viewerpw", "role": "viewer"}
            }
        },
        "firewall": {
            "nft_binary": "nft",
            "command_timeout": 5,
            "edit_strategy": "auto",
            "degrade_to_placeholder": False,
            "refetch_after_mutation": True
        },
        "audit": {
            "enabled": True,
            "file": str(tmp_path / "audit.log")
        },
        "simulation": {
            "enabled": True,
            "supports_transactions": False,
            "tables": SEED_TABLES
        }
    }


@pytest.fixture
def sample_nft_json():
    """A small ``nft -j list ruleset`` document."""
    return {
        "nftables": [
            {"metainfo": {"version": "1.0.9", "json_schema_version": 1}},
            {"table": {"family": "inet", "name": "filter", "handle": 1}},
            {"chain": {"family": "inet", "table": "filter", "name": "INPUT", "handle": 1,
                       "type": "filter", "hook": "input", "prio": 0, "policy": "drop"}},
            {"rule": {"family": "inet", "table": "filter", "chain": "INPUT", "handle": 4,
                      "comment": "Allow Localhost",
                      "expr": [
                          {"match": {"left": {"meta": {"key": "iifname"}}, "op": "==", "right": "lo"}},
                          {"accept": None}
                      ]}},
            {"rule": {"family": "inet", "table": "filter", "chain": "INPUT", "handle": 5,
                      "expr": [
                          {"match": {"left": {"payload": {"protocol": "tcp", "field": "dport"}},
                                     "op": "==", "right": 8080}},
                          {"counter": {"packets": 12, "bytes": 720}},
                          {"accept": None}
                      ]}},
            {"table": {"family": "ip", "name": "nat", "handle": 2}},
            {"chain": {"family": "ip", "table": "nat", "name": "POSTROUTING", "handle": 1,
                       "type": "nat", "hook": "postrouting", "prio": 100, "policy": "accept"}},
            {"rule": {"family": "ip", "table": "nat", "chain": "POSTROUTING", "handle": 4,
                      "expr": [
                          {"match": {"left": {"meta": {"key": "oifname"}}, "op": "==", "right": "eth0"}},
                          {"masquerade": None}
                      ]}}
        ]
    }


@pytest.fixture
def sim_kernel():
    """Seeded in-memory kernel without transaction support."""
    from core.simulated_kernel import SimulatedKernel
    return SimulatedKernel(tables=SEED_TABLES)


@pytest.fixture
def atomic_kernel():
    """Seeded in-memory kernel that supports atomic replace."""
    from core.simulated_kernel import SimulatedKernel
    return SimulatedKernel(tables=SEED_TABLES, supports_transactions=True)


@pytest.fixture
def empty_kernel():
    """In-memory kernel holding one empty inet filter INPUT chain."""
    from core.simulated_kernel import SimulatedKernel
    return SimulatedKernel(tables=[{"family": "inet", "name": "filter",
                                    "chains": [{"name": "INPUT"}]}])


@pytest.fixture
def failing_kernel():
    """Kernel whose nft binary is unreachable."""
    from core.errors import TransportError
    from core.nft_kernel import KernelCollaborator

    kernel = Mock(spec=KernelCollaborator)
    kernel.supports_transactions = False
    kernel.list_ruleset.side_effect = TransportError("nft binary not available")
    kernel.add_rule.side_effect = TransportError("nft binary not available")
    kernel.delete_rule.side_effect = TransportError("nft binary not available")
    return kernel


@pytest.fixture
def audit_log(tmp_path):
    """Audit log in a temporary directory."""
    from core.audit_log import AuditLog
    return AuditLog(path=str(tmp_path / "audit.log"))


@pytest.fixture
def orchestrator(sim_kernel, audit_log):
    """Sequential orchestrator over the seeded kernel."""
    from core.mutation_orchestrator import MutationOrchestrator
    from core.ruleset_client import RulesetClient
    return MutationOrchestrator(sim_kernel, RulesetClient(sim_kernel),
                                edit_strategy="sequential", audit_log=audit_log)


@pytest.fixture
def engine(test_config):
    """Firewall engine running against the simulated kernel."""
    from core.engine import FirewallEngine
    return FirewallEngine(test_config)


@pytest.fixture
def app(test_config, engine):
    """Flask app with authentication disabled."""
    from api.app import create_app
    app = create_app(test_config, engine)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(test_config, engine):
    """Flask test client with authentication enabled."""
    from api.app import create_app
    test_config["auth"]["enabled"] = True
    app = create_app(test_config, engine)
    app.config["TESTING"] = True
    return app.test_client()
