"""End-to-end alert flows: creation, escalation, response and failure."""

from datetime import timedelta

import httpx
import pytest

from carealert.models.alert import AlertKind, AlertSeverity, AlertStatus
from carealert.models.care_relationship import RelationshipType
from carealert.models.notification_attempt import AttemptOutcome, Channel
from carealert.schemas.escalation_policy import EscalationPolicy, EscalationStep, RecipientTier
from tests.fakes import EMAIL_HOST, WHATSAPP_HOST

ESCALATING_FLOORS = ["high", "critical", "critical"]


@pytest.mark.asyncio
async def test_new_alert_notifies_caregiver_on_every_channel(
    core, make_profile, link_caregiver
):
    patient = await make_profile("Rosa Patient")
    caregiver = await make_profile("Pat Primary", phone="+13035550111")
    await link_caregiver(patient, caregiver, relationship_type=RelationshipType.PRIMARY_CAREGIVER)

    created = await core.lifecycle.create(AlertKind.PROLONGED_INACTIVITY, patient.id)
    await created.dispatch.wait()

    attempts = await core.lifecycle.audit_log(created.alert.id)
    assert sorted(a.channel.value for a in attempts) == ["email", "whatsapp"]
    assert all(a.recipient_id == caregiver.id for a in attempts)
    assert all(a.round_number == 0 for a in attempts)
    alert = await core.lifecycle.get(created.alert.id)
    assert alert.status == AlertStatus.ACTIVE
    assert alert.severity == AlertSeverity.MEDIUM


@pytest.mark.asyncio
async def test_unanswered_alert_escalates_to_backup(make_core, care_circle):
    core = make_core(escalation_step_severity_floors=ESCALATING_FLOORS)
    created = await core.lifecycle.create(
        AlertKind.PROLONGED_INACTIVITY, care_circle["patient"].id
    )
    await created.dispatch.wait()
    timer = await core.store.get_timer(created.alert.id)
    assert timer.fire_at == created.alert.created_at + timedelta(seconds=300)

    dispatch = await core.escalations.fire(created.alert.id, now=timer.fire_at)
    await dispatch.wait()

    alert = await core.lifecycle.get(created.alert.id)
    assert alert.severity == AlertSeverity.HIGH
    attempts = await core.lifecycle.audit_log(created.alert.id)
    first_round = {a.recipient_id for a in attempts if a.round_number == 0}
    second_round = {a.recipient_id for a in attempts if a.round_number == 1}
    assert first_round == {care_circle["primary"].id}
    assert second_round == {care_circle["primary"].id, care_circle["backup"].id}

    next_timer = await core.store.get_timer(created.alert.id)
    assert next_timer.step_index == 1
    assert next_timer.fire_at == timer.fire_at + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_acknowledged_alert_never_escalates(core, care_circle):
    created = await core.lifecycle.create(AlertKind.FALL_DETECTED, care_circle["patient"].id)
    await created.dispatch.wait()
    timer = await core.store.get_timer(created.alert.id)

    alert = await core.lifecycle.acknowledge(created.alert.id, care_circle["primary"].id)
    assert alert.status == AlertStatus.ACKNOWLEDGED
    assert await core.store.get_timer(created.alert.id) is None

    assert await core.escalations.fire(
        created.alert.id, now=timer.fire_at + timedelta(seconds=5)
    ) is None

    attempts = await core.lifecycle.audit_log(created.alert.id)
    assert {a.round_number for a in attempts} == {0}


@pytest.mark.asyncio
async def test_caregiver_without_alert_permission_never_contacted(
    core, make_profile, link_caregiver, providers
):
    patient = await make_profile("Rosa Patient")
    caregiver = await make_profile("Pat Primary", phone="+13035550111")
    muted = await make_profile("Mo Muted", email="mo@example.com", phone="+13035550122")
    await link_caregiver(patient, caregiver, relationship_type=RelationshipType.PRIMARY_CAREGIVER)
    await link_caregiver(patient, muted, can_receive_alerts=False)

    created = await core.lifecycle.create(AlertKind.FALL_DETECTED, patient.id)
    await created.dispatch.wait()
    for _ in range(3):
        timer = await core.store.get_timer(created.alert.id)
        dispatch = await core.escalations.fire(created.alert.id, now=timer.fire_at)
        await dispatch.wait()

    attempts = await core.lifecycle.audit_log(created.alert.id)
    assert attempts
    assert muted.id not in {a.recipient_id for a in attempts}
    assert "mo@example.com" not in str([p["to"] for p in providers.payloads(EMAIL_HOST)])


@pytest.mark.asyncio
async def test_total_delivery_failure_still_escalates(make_core, care_circle, providers):
    core = make_core(escalation_step_severity_floors=ESCALATING_FLOORS)
    for host in (EMAIL_HOST, WHATSAPP_HOST):
        providers.script(
            host,
            httpx.Response(503, text="unavailable"),
            httpx.Response(503, text="unavailable"),
        )

    created = await core.lifecycle.create(
        AlertKind.PROLONGED_INACTIVITY, care_circle["patient"].id
    )
    report = await created.dispatch.wait()

    assert report.sent == 0
    assert report.failed == 2
    assert all(r.attempts == 2 for r in report.results)
    alert = await core.lifecycle.get(created.alert.id)
    assert alert.status == AlertStatus.ACTIVE

    timer = await core.store.get_timer(created.alert.id)
    dispatch = await core.escalations.fire(created.alert.id, now=timer.fire_at)
    escalation = await dispatch.wait()

    assert escalation.sent == 3
    alert = await core.lifecycle.get(created.alert.id)
    assert alert.severity == AlertSeverity.HIGH
    assert alert.escalation_step == 1
    failed = [
        a for a in await core.lifecycle.audit_log(created.alert.id)
        if a.outcome == AttemptOutcome.FAILED
    ]
    assert {a.round_number for a in failed} == {0}
    assert {a.failure_reason for a in failed} == {"provider_unavailable"}


@pytest.mark.asyncio
async def test_alerts_for_different_patients_escalate_independently(
    core, make_profile, link_caregiver
):
    fast_patient = await make_profile("Fay Fast")
    slow_patient = await make_profile("Sol Slow")
    fast_carer = await make_profile("Fin Carer")
    slow_carer = await make_profile("Sue Carer", phone="+13035550133")
    await link_caregiver(fast_patient, fast_carer)
    await link_caregiver(slow_patient, slow_carer)
    await core.policies.set_patient_policy(
        fast_patient.id,
        EscalationPolicy(
            steps=[
                EscalationStep(
                    delay_seconds=30,
                    severity_floor=AlertSeverity.CRITICAL,
                    recipient_tier=RecipientTier.ALL,
                )
            ]
        ),
    )

    fast = await core.lifecycle.create(AlertKind.MISSED_CHECKIN, fast_patient.id)
    slow = await core.lifecycle.create(AlertKind.MISSED_CHECKIN, slow_patient.id)
    await fast.dispatch.wait()
    await slow.dispatch.wait()

    fast_timer = await core.store.get_timer(fast.alert.id)
    slow_timer = await core.store.get_timer(slow.alert.id)
    assert fast_timer.fire_at == fast.alert.created_at + timedelta(seconds=30)
    assert slow_timer.fire_at == slow.alert.created_at + timedelta(seconds=300)

    dispatch = await core.escalations.fire(fast.alert.id, now=fast_timer.fire_at)
    await dispatch.wait()
    # The slow alert is not due yet at the fast alert's fire time
    assert await core.escalations.fire(slow.alert.id, now=fast_timer.fire_at) is None

    fast_alert = await core.lifecycle.get(fast.alert.id)
    slow_alert = await core.lifecycle.get(slow.alert.id)
    assert (fast_alert.escalation_step, fast_alert.severity) == (1, AlertSeverity.CRITICAL)
    assert (slow_alert.escalation_step, slow_alert.severity) == (0, AlertSeverity.LOW)
    assert await core.store.get_timer(fast.alert.id) is None
    assert (await core.store.get_timer(slow.alert.id)).fire_at == slow_timer.fire_at

    fast_attempts = await core.lifecycle.audit_log(fast.alert.id)
    slow_attempts = await core.lifecycle.audit_log(slow.alert.id)
    assert {a.recipient_id for a in fast_attempts} == {fast_carer.id}
    assert {a.recipient_id for a in slow_attempts} == {slow_carer.id}
    assert [a.channel for a in fast_attempts] == [Channel.EMAIL, Channel.EMAIL]
    assert sorted(a.channel.value for a in slow_attempts) == ["email", "whatsapp"]


@pytest.mark.asyncio
async def test_patient_answers_check_in_and_caregivers_are_never_told(
    make_core, care_circle, providers
):
    core = make_core(patient_check_in_kinds=["prolonged_inactivity"])
    patient = care_circle["patient"]

    created = await core.lifecycle.create(AlertKind.PROLONGED_INACTIVITY, patient.id)
    report = await created.dispatch.wait()

    assert {(r.recipient_id, r.channel) for r in report.results} == {
        (patient.id, Channel.EMAIL),
        (patient.id, Channel.WHATSAPP),
    }
    emails = providers.payloads(EMAIL_HOST)
    assert [e["to"] for e in emails] == [["rosa@example.com"]]
    assert "Are You Okay?" in emails[0]["subject"]

    alert = await core.lifecycle.acknowledge(created.alert.id, patient.id, note="I'm fine")

    assert alert.status == AlertStatus.ACKNOWLEDGED
    assert alert.acknowledged_by == patient.id
    assert await core.store.get_timer(created.alert.id) is None
    attempts = await core.lifecycle.audit_log(created.alert.id)
    assert {a.recipient_id for a in attempts} == {patient.id}


@pytest.mark.asyncio
async def test_unanswered_check_in_escalates_to_caregivers(make_core, care_circle, providers):
    core = make_core(patient_check_in_kinds=["prolonged_inactivity"])
    created = await core.lifecycle.create(
        AlertKind.PROLONGED_INACTIVITY, care_circle["patient"].id
    )
    await created.dispatch.wait()
    timer = await core.store.get_timer(created.alert.id)
    assert timer.fire_at == created.alert.created_at + timedelta(seconds=300)

    dispatch = await core.escalations.fire(created.alert.id, now=timer.fire_at)
    report = await dispatch.wait()

    assert report.round_number == 1
    assert {r.recipient_id for r in report.results} == {
        care_circle["primary"].id,
        care_circle["backup"].id,
    }
    caregiver_emails = [
        e for e in providers.payloads(EMAIL_HOST) if e["to"] != ["rosa@example.com"]
    ]
    assert len(caregiver_emails) == 2
    for email in caregiver_emails:
        assert "URGENT" in email["subject"]
        assert "Check-in sent to Rosa Patient, no response" in email["text"]


@pytest.mark.asyncio
async def test_check_in_falls_back_to_caregivers_when_patient_unreachable(
    make_core, make_profile, link_caregiver
):
    core = make_core(patient_check_in_kinds=["prolonged_inactivity"], resend_api_key="")
    patient = await make_profile("Rosa Patient")
    caregiver = await make_profile("Pat Primary", phone="+13035550111")
    await link_caregiver(patient, caregiver, relationship_type=RelationshipType.PRIMARY_CAREGIVER)

    created = await core.lifecycle.create(AlertKind.PROLONGED_INACTIVITY, patient.id)
    report = await created.dispatch.wait()

    assert {(r.recipient_id, r.channel) for r in report.results} == {
        (caregiver.id, Channel.WHATSAPP)
    }


@pytest.mark.asyncio
async def test_other_kinds_skip_the_check_in(make_core, care_circle):
    core = make_core(patient_check_in_kinds=["prolonged_inactivity"])

    created = await core.lifecycle.create(AlertKind.FALL_DETECTED, care_circle["patient"].id)
    report = await created.dispatch.wait()

    assert {r.recipient_id for r in report.results} == {care_circle["primary"].id}
