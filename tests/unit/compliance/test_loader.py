"""Tests for loading policies and devices from YAML files."""

from datetime import datetime, timezone

import pytest
import yaml

from netcomply.compliance import ComplianceRunError, RuleValidationError, UnknownRuleKindError
from netcomply.compliance.loader import load_devices, load_policies, parse_datetime, parse_policies
from netcomply.rules import PythonRule, TextRule

POLICIES = {
    "policies": [
        {
            "name": "Security baseline",
            "target_groups": ["edge"],
            "rules": [
                {
                    "type": "text",
                    "name": "banner-check",
                    "enabled": True,
                    "text": "Authorized access only",
                    "exemptions": [
                        {"device_id": 3},
                        {"device_id": 4, "expiration_date": "2026-06-01T00:00:00Z"},
                    ],
                },
                {
                    "type": "python",
                    "id": 1,
                    "name": "ssh-only",
                    "enabled": True,
                    "script": "def check(device):\n    return CONFORMING\n",
                },
            ],
        },
        {
            "name": "Management",
            "id": 7,
            "rules": [
                {"type": "text", "name": "ntp", "text": "ntp server"},
            ],
        },
    ],
}


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestParsePolicies:
    """Tests for parse_policies."""

    def test_policies_and_rules(self):
        policies, _ = parse_policies(POLICIES)

        assert [p.name for p in policies] == ["Security baseline", "Management"]
        baseline = policies[0]
        assert baseline.target_groups == frozenset({"edge"})
        assert isinstance(baseline.get_rule("banner-check"), TextRule)
        assert isinstance(baseline.get_rule("ssh-only"), PythonRule)
        assert baseline.get_rule("banner-check").policy is baseline

    def test_ids_assigned_without_collisions(self):
        policies, _ = parse_policies(POLICIES)

        assert policies[1].id == 7
        assert policies[0].id == 1
        rule_ids = [rule.id for policy in policies for rule in policy.rules]
        assert policies[0].get_rule("ssh-only").id == 1
        assert len(set(rule_ids)) == len(rule_ids)
        assert 0 not in rule_ids

    def test_exemptions(self, now):
        policies, exemptions = parse_policies(POLICIES)
        banner = policies[0].get_rule("banner-check")

        assert len(exemptions) == 2
        assert exemptions.is_exempted(banner, 3, now)
        assert exemptions.is_exempted(banner, 4, now)
        assert not exemptions.is_exempted(banner, 4, datetime(2026, 7, 1, tzinfo=timezone.utc))

    def test_invalid_rule_rejected(self):
        data = {"policies": [{"name": "p", "rules": [{"type": "text", "name": "empty"}]}]}

        with pytest.raises(RuleValidationError):
            parse_policies(data)

    def test_validation_can_be_skipped(self):
        data = {"policies": [{"name": "p", "rules": [{"type": "text", "name": "empty"}]}]}

        policies, _ = parse_policies(data, validate=False)

        assert len(policies[0]) == 1

    def test_unknown_kind(self):
        data = {"policies": [{"name": "p", "rules": [{"type": "perl", "name": "x"}]}]}

        with pytest.raises(UnknownRuleKindError):
            parse_policies(data)

    @pytest.mark.parametrize("data", [None, [], {"policies": "nope"}, {"policies": [{"rules": []}]}])
    def test_invalid_document(self, data):
        with pytest.raises(ComplianceRunError):
            parse_policies(data)

    def test_duplicate_rule_id_rejected(self):
        data = {"policies": [
            {"name": "p1", "rules": [{"type": "text", "id": 7, "name": "a", "text": "hostname"}]},
            {"name": "p2", "rules": [{"type": "text", "id": 7, "name": "b", "text": "banner"}]},
        ]}

        with pytest.raises(ComplianceRunError, match="Duplicate rule id 7"):
            parse_policies(data)

    def test_duplicate_policy_id_rejected(self):
        data = {"policies": [{"name": "p1", "id": 3}, {"name": "p2", "id": "3"}]}

        with pytest.raises(ComplianceRunError, match="Duplicate policy id 3"):
            parse_policies(data)

    def test_auto_ids_skip_explicit_ones(self):
        data = {"policies": [{"name": "p", "rules": [
            {"type": "text", "name": "a", "text": "x"},
            {"type": "text", "id": 1, "name": "b", "text": "y"},
        ]}]}

        policies, _ = parse_policies(data)

        assert [r.id for r in policies[0].rules] == [2, 1]

    @pytest.mark.parametrize("data", [
        {"policies": ["not a mapping"]},
        {"policies": [{"name": "p", "rules": ["not a mapping"]}]},
        {"policies": [{"name": "p", "id": "abc"}]},
        {"policies": [{"name": "p", "rules": [
            {"type": "text", "name": "r", "text": "x", "exemptions": [{"expiration_date": "2026-06-01"}]},
        ]}]},
        {"policies": [{"name": "p", "rules": [
            {"type": "text", "name": "r", "text": "x", "exemptions": [{"device_id": "edge-1"}]},
        ]}]},
    ])
    def test_malformed_entries(self, data):
        with pytest.raises(ComplianceRunError):
            parse_policies(data)


class TestLoadFiles:
    """Tests for file loading."""

    def test_load_policies(self, tmp_path):
        policies, exemptions = load_policies(write_yaml(tmp_path / "policies.yaml", POLICIES))

        assert len(policies) == 2
        assert len(exemptions) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ComplianceRunError, match="not found"):
            load_policies(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("policies: [unclosed")

        with pytest.raises(ComplianceRunError, match="Invalid YAML"):
            load_policies(str(path))

    def test_rule_errors_name_the_file(self, tmp_path):
        data = {"policies": [{"name": "p", "rules": [{"type": "text", "name": "empty"}]}]}
        path = write_yaml(tmp_path / "policies.yaml", data)

        with pytest.raises(RuleValidationError, match="policies.yaml"):
            load_policies(path)

    def test_load_single_device(self, tmp_path, exemptions):
        path = write_yaml(tmp_path / "edge-1.yaml", {
            "id": 1,
            "name": "edge-1",
            "driver": "CiscoIOS12",
            "groups": ["edge"],
            "attributes": {"running_config": "hostname edge-1\n"},
        })

        devices = load_devices(path, exemptions)

        assert len(devices) == 1
        assert devices[0].name == "edge-1"
        assert devices[0].groups == frozenset({"edge"})
        assert devices[0].exemptions is exemptions
        assert devices[0].get_attribute("running_config") == "hostname edge-1\n"

    def test_load_device_list(self, tmp_path):
        path = write_yaml(tmp_path / "devices.yaml", {
            "devices": [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}],
        })

        assert [d.name for d in load_devices(path)] == ["a", "b"]

    def test_invalid_device(self, tmp_path):
        path = write_yaml(tmp_path / "device.yaml", {"name": "no-id"})

        with pytest.raises(ComplianceRunError):
            load_devices(path)


class TestParseDatetime:
    """Tests for date parsing."""

    def test_zulu(self):
        assert parse_datetime("2026-06-01T00:00:00Z") == datetime(2026, 6, 1, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_datetime(datetime(2026, 6, 1)).tzinfo is timezone.utc

    def test_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_invalid(self):
        with pytest.raises(ComplianceRunError):
            parse_datetime("next tuesday")
