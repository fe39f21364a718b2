"""Tests for escalation policy validation and the policy provider."""

import json
import os
import uuid
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from carealert.models.alert import AlertSeverity
from carealert.schemas.escalation_policy import (
    EscalationPolicy,
    EscalationStep,
    RecipientTier,
)
from carealert.services.escalation_policy import (
    EscalationPolicyProvider,
    policy_from_settings,
)

DEFAULT = EscalationPolicy(
    steps=[
        EscalationStep(delay_seconds=300, severity_floor=AlertSeverity.MEDIUM),
        EscalationStep(delay_seconds=600, severity_floor=AlertSeverity.HIGH),
    ]
)


def write_policy(path, steps: list[dict]) -> None:
    path.write_text(json.dumps({"steps": steps}), encoding="utf-8")


class TestEscalationPolicySchema:
    """Tests for EscalationPolicy / EscalationStep validation."""

    def test_step_lookup(self):
        assert DEFAULT.step(0).delay_seconds == 300
        assert DEFAULT.step(1).severity_floor == AlertSeverity.HIGH

    def test_step_past_end_is_none(self):
        assert DEFAULT.step(2) is None
        assert DEFAULT.step(-1) is None

    def test_empty_policy_allowed(self):
        assert EscalationPolicy(steps=[]).step(0) is None

    def test_recipient_tier_defaults_to_all(self):
        step = EscalationStep(delay_seconds=60, severity_floor="low")

        assert step.recipient_tier == RecipientTier.ALL

    def test_zero_delay_rejected(self):
        with pytest.raises(ValidationError):
            EscalationStep(delay_seconds=0, severity_floor="high")

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            EscalationStep(delay_seconds=60, severity_floor="catastrophic")

    def test_decreasing_floors_rejected(self):
        with pytest.raises(ValidationError, match="must not decrease"):
            EscalationPolicy(
                steps=[
                    {"delay_seconds": 60, "severity_floor": "critical"},
                    {"delay_seconds": 60, "severity_floor": "high"},
                ]
            )


class TestPolicyFromSettings:
    """Tests for policy_from_settings()."""

    def test_builds_steps_from_parallel_lists(self, test_settings):
        policy = policy_from_settings(test_settings)

        assert [s.delay_seconds for s in policy.steps] == [300, 600, 1200]
        assert [s.severity_floor for s in policy.steps] == [
            AlertSeverity.MEDIUM,
            AlertSeverity.HIGH,
            AlertSeverity.CRITICAL,
        ]
        assert all(s.recipient_tier == RecipientTier.ALL for s in policy.steps)

    def test_mismatched_lengths_rejected(self, test_settings):
        settings = test_settings.model_copy(update={"escalation_step_tiers": ["all"]})

        with pytest.raises(ValueError, match="same length"):
            policy_from_settings(settings)


class TestPolicyFile:
    """The default policy is re-read when the policy file changes."""

    def test_file_replaces_settings_default(self, tmp_path):
        path = tmp_path / "policy.json"
        write_policy(path, [{"delay_seconds": 120, "severity_floor": "high", "recipient_tier": "primary"}])

        provider = EscalationPolicyProvider(MagicMock(), DEFAULT, policy_file=str(path))
        policy = provider.default_policy()

        assert len(policy.steps) == 1
        assert policy.step(0).delay_seconds == 120
        assert policy.step(0).recipient_tier == RecipientTier.PRIMARY

    def test_reload_on_modification(self, tmp_path):
        path = tmp_path / "policy.json"
        write_policy(path, [{"delay_seconds": 120, "severity_floor": "high"}])
        provider = EscalationPolicyProvider(MagicMock(), DEFAULT, policy_file=str(path))
        provider.default_policy()

        write_policy(
            path,
            [
                {"delay_seconds": 30, "severity_floor": "medium"},
                {"delay_seconds": 90, "severity_floor": "critical"},
            ],
        )
        mtime = os.stat(path).st_mtime + 10
        os.utime(path, (mtime, mtime))

        policy = provider.default_policy()
        assert [s.delay_seconds for s in policy.steps] == [30, 90]

    def test_invalid_file_keeps_previous_policy(self, tmp_path):
        path = tmp_path / "policy.json"
        write_policy(path, [{"delay_seconds": 120, "severity_floor": "high"}])
        provider = EscalationPolicyProvider(MagicMock(), DEFAULT, policy_file=str(path))
        provider.default_policy()

        path.write_text("{not json", encoding="utf-8")
        mtime = os.stat(path).st_mtime + 10
        os.utime(path, (mtime, mtime))

        policy = provider.default_policy()
        assert policy.step(0).delay_seconds == 120

    def test_missing_file_falls_back_to_default(self, tmp_path):
        provider = EscalationPolicyProvider(
            MagicMock(), DEFAULT, policy_file=str(tmp_path / "absent.json")
        )

        assert provider.default_policy() == DEFAULT


class TestPatientPolicies:
    """Per-patient overrides stored in the database."""

    @pytest.mark.asyncio
    async def test_default_when_no_override(self, session_maker, make_profile):
        patient = await make_profile("Rosa Patient")
        provider = EscalationPolicyProvider(session_maker, DEFAULT)

        assert await provider.get_patient_policy(patient.id) is None
        assert await provider.policy_for(patient.id) == DEFAULT

    @pytest.mark.asyncio
    async def test_override_replaces_default(self, session_maker, make_profile):
        patient = await make_profile("Rosa Patient")
        provider = EscalationPolicyProvider(session_maker, DEFAULT)
        override = EscalationPolicy(
            steps=[EscalationStep(delay_seconds=45, severity_floor=AlertSeverity.CRITICAL)]
        )

        row = await provider.set_patient_policy(patient.id, override)

        assert row.patient_id == patient.id
        assert row.steps == [
            {"delay_seconds": 45, "severity_floor": "critical", "recipient_tier": "all"}
        ]
        assert await provider.policy_for(patient.id) == override

    @pytest.mark.asyncio
    async def test_set_twice_updates_in_place(self, session_maker, make_profile):
        patient = await make_profile("Rosa Patient")
        provider = EscalationPolicyProvider(session_maker, DEFAULT)

        first = await provider.set_patient_policy(patient.id, DEFAULT)
        second = await provider.set_patient_policy(
            patient.id,
            EscalationPolicy(steps=[EscalationStep(delay_seconds=10, severity_floor="low")]),
        )

        assert first.id == second.id
        assert (await provider.policy_for(patient.id)).step(0).delay_seconds == 10

    @pytest.mark.asyncio
    async def test_clear_override(self, session_maker, make_profile):
        patient = await make_profile("Rosa Patient")
        provider = EscalationPolicyProvider(session_maker, DEFAULT)
        await provider.set_patient_policy(
            patient.id,
            EscalationPolicy(steps=[EscalationStep(delay_seconds=10, severity_floor="low")]),
        )

        assert await provider.clear_patient_policy(patient.id) is True
        assert await provider.clear_patient_policy(patient.id) is False
        assert await provider.policy_for(patient.id) == DEFAULT

    @pytest.mark.asyncio
    async def test_unknown_patient_has_no_override(self, session_maker):
        provider = EscalationPolicyProvider(session_maker, DEFAULT)

        assert await provider.clear_patient_policy(uuid.uuid4()) is False
