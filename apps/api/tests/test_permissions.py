"""Tests for device permission requests."""

import pytest

from snapsecure_api.errors import NotFoundError


def _granted(container, user_id):
    return {p["permission_type"] for p in container.permissions.list_for_user(user_id) if p["is_granted"]}


def test_request_grants_permission(container, user):
    decision = container.permissions.request(user.id, "CAMERA", "Take a photo")
    assert decision.allowed
    assert _granted(container, user.id) == {"CAMERA"}

    grants = [
        e for e in container.ledger.entries_of_type("security_audit")
        if e.payload["data"]["eventType"] == "permission_granted"
    ]
    assert len(grants) == 1


def test_revoke(container, user):
    container.permissions.request(user.id, "GALLERY", "Share a picture")
    tx_hash = container.permissions.revoke(user.id, "GALLERY")
    assert _granted(container, user.id) == set()
    assert container.ledger.get(tx_hash).payload["data"]["riskLevel"] == "medium"
    revoked = [p for p in container.permissions.list_for_user(user.id) if p["permission_type"] == "GALLERY"]
    assert revoked[0]["revoked_at"] is not None


def test_low_security_score_denied(container, user):
    container.users.update(user.id, security_score=40)
    decision = container.permissions.request(user.id, "MICROPHONE", "Voice note")
    assert not decision.allowed
    assert decision.reason == "Security score too low"
    assert _granted(container, user.id) == set()


def test_flagged_requests_are_capped(container, user):
    for _ in range(3):
        decision = container.permissions.request(
            user.id, "CAMERA", "photo", metadata={"unusual_pattern": True}
        )
        assert decision.allowed

    decision = container.permissions.request(user.id, "CAMERA", "photo", metadata={"unusual_pattern": True})
    assert not decision.allowed
    assert decision.reason == "Too many recent permission requests"


def test_rapid_requests_need_verification(container, user):
    container.permissions.heuristics.rapid_activity_threshold = 1
    container.permissions.request(user.id, "CAMERA", "photo")

    decision = container.permissions.request(
        user.id, "CAMERA", "photo", metadata={"unusual_pattern": True}
    )
    assert not decision.allowed
    assert decision.reason == "Additional verification required"


def test_unknown_permission_type(container, user):
    with pytest.raises(ValueError):
        container.permissions.request(user.id, "LOCATION", "maps")


def test_unknown_user(container):
    with pytest.raises(NotFoundError):
        container.permissions.check(12345, "CAMERA")
