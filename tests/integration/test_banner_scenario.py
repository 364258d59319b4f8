"""End-to-end banner compliance scenario.

A policy requires the login banner on edge routers. edge-1 lacks it,
edge-2 has it; the same check is then run through the command line.
"""

import logging
from unittest.mock import patch

import pytest
import yaml

from netcomply.__main__ import main
from netcomply.compliance import (
    ComplianceRun,
    ComplianceRunner,
    ExemptionRegistry,
    Policy,
    ResultOption,
)
from netcomply.rules import TextRule
from tests.factories import BANNER_CONFIG, NO_BANNER_CONFIG, make_device

pytestmark = pytest.mark.integration

BANNER_TEXT = "Authorized access only"


@pytest.fixture
def banner_policy():
    policy = Policy("edge-baseline", id=1, target_groups=["edge"])
    policy.add_rule(TextRule(name="login-banner", id=10, enabled=True, text=BANNER_TEXT))
    return policy


@pytest.fixture
def reset_cli_logging():
    """Drop the handlers installed by the command line run."""
    yield
    logger = logging.getLogger("netcomply")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


class TestBannerScenario:
    """Banner check through the runner."""

    def test_missing_and_present_banner(self, banner_policy, context):
        exemptions = ExemptionRegistry()
        devices = [
            make_device(id=1, name="edge-1", running_config=NO_BANNER_CONFIG, exemptions=exemptions),
            make_device(id=2, name="edge-2", running_config=BANNER_CONFIG, exemptions=exemptions),
        ]

        run = ComplianceRunner(max_workers=2).run([banner_policy], devices, context)

        by_device = {r.device_name: r for r in run.results}
        assert by_device["edge-1"].result == ResultOption.NON_CONFORMING
        assert BANNER_TEXT in by_device["edge-1"].comment
        assert by_device["edge-2"].result == ResultOption.CONFORMING
        assert [r.device_name for r in run.non_conforming()] == ["edge-1"]

    def test_exempted_router(self, banner_policy, context):
        exemptions = ExemptionRegistry()
        edge_1 = make_device(id=1, name="edge-1", running_config=NO_BANNER_CONFIG, exemptions=exemptions)
        exemptions.exempt(banner_policy.get_rule("login-banner"), edge_1)

        run = ComplianceRunner().run([banner_policy], [edge_1], context)

        assert [r.result for r in run.results] == [ResultOption.EXEMPTED]
        assert run.non_conforming() == []

    def test_router_outside_target_groups(self, banner_policy, context):
        core = make_device(id=5, name="core-1", groups=("core",))

        run = ComplianceRunner().run([banner_policy], [core], context)

        assert run.results == []


@pytest.mark.usefixtures("reset_cli_logging")
class TestCommandLine:
    """Banner check through the command line."""

    @pytest.fixture
    def policies_file(self, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text(yaml.safe_dump({
            "policies": [{
                "name": "edge-baseline",
                "target_groups": ["edge"],
                "rules": [{"type": "text", "name": "login-banner", "enabled": True, "text": BANNER_TEXT}],
            }],
        }))
        return str(path)

    def write_device(self, tmp_path, id, name, config):
        path = tmp_path / f"{name}.yaml"
        path.write_text(yaml.safe_dump({
            "id": id,
            "name": name,
            "groups": ["edge"],
            "attributes": {"running_config": config},
        }))
        return str(path)

    def test_non_conforming_exit_code(self, tmp_path, policies_file, capsys):
        exit_code = main([
            policies_file,
            self.write_device(tmp_path, 1, "edge-1", NO_BANNER_CONFIG),
            self.write_device(tmp_path, 2, "edge-2", BANNER_CONFIG),
        ])

        out = capsys.readouterr().out
        assert exit_code == 1
        assert "edge-1 / login-banner: NON_CONFORMING" in out
        assert "edge-2 / login-banner: CONFORMING" in out
        assert "CONFORMING=1" in out
        assert "NON_CONFORMING=1" in out

    def test_conforming_exit_code(self, tmp_path, policies_file, capsys):
        exit_code = main([policies_file, self.write_device(tmp_path, 2, "edge-2", BANNER_CONFIG)])

        assert exit_code == 0
        assert "edge-2 / login-banner: CONFORMING" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, policies_file, capsys):
        exit_code = main([policies_file, str(tmp_path / "missing.yaml")])

        assert exit_code == 2
        assert "Error:" in capsys.readouterr().err

    def test_malformed_policy_file(self, tmp_path, capsys):
        path = tmp_path / "policies.yaml"
        path.write_text(yaml.safe_dump({
            "policies": [{
                "name": "edge-baseline",
                "rules": [{
                    "type": "text",
                    "name": "login-banner",
                    "enabled": True,
                    "text": BANNER_TEXT,
                    "exemptions": [{"expiration_date": "2026-06-01"}],
                }],
            }],
        }))

        exit_code = main([str(path), self.write_device(tmp_path, 1, "edge-1", NO_BANNER_CONFIG)])

        assert exit_code == 2
        assert "device_id" in capsys.readouterr().err

    def test_stuck_evaluations_force_exit(self, tmp_path, policies_file):
        abandoned = ComplianceRun(abandoned=1)
        with patch.object(ComplianceRunner, "run", return_value=abandoned), \
                patch("netcomply.__main__.os._exit") as force_exit:
            main([policies_file, self.write_device(tmp_path, 2, "edge-2", BANNER_CONFIG)])

        force_exit.assert_called_once_with(0)

    def test_usage(self, capsys):
        assert main([]) == 2
        assert "Usage" in capsys.readouterr().err
