"""Tests for the file-backed stores."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from listing_guard.moderation.models import (
    Listing,
    ListingModerationStatus,
    ListingStatus,
    ModerationDecision,
    ModerationResult,
    ModerationSeverity,
    ModerationSource,
    ModerationViolation,
)
from listing_guard.stores.user_store import UserRecord


def _flagged(summary="Counterfeit") -> ModerationResult:
    return ModerationResult(
        decision=ModerationDecision.FLAGGED,
        severity=ModerationSeverity.HIGH,
        violations=[ModerationViolation("counterfeit", "fraud", ModerationSeverity.HIGH, "Replica")],
        summary=summary,
        model="test-model",
        raw_response='{"decision": "flagged"}',
    )


# ── Decision cache ───────────────────────────────────────────────────


def test_cache_roundtrip_drops_raw_text(stores):
    stores.moderation.upsert_cached_decision("fp", _flagged(), ttl=60)
    cached = stores.moderation.get_cached_decision("fp")
    assert cached.decision == ModerationDecision.FLAGGED
    assert cached.violations[0].code == "counterfeit"
    assert cached.raw_response == ""


def test_cache_entry_expires(stores):
    stores.moderation.upsert_cached_decision("fp", _flagged(), ttl=60)
    later = datetime.now(timezone.utc) + timedelta(seconds=61)
    assert stores.moderation.get_cached_decision("fp", later) is None


def test_cache_upsert_overwrites(stores):
    stores.moderation.upsert_cached_decision("fp", _flagged("first"), ttl=60)
    stores.moderation.upsert_cached_decision("fp", _flagged("second"), ttl=60)
    assert stores.moderation.get_cached_decision("fp").summary == "second"


def test_purge_removes_only_expired(stores):
    store = stores.moderation
    store.upsert_cached_decision("short", _flagged(), ttl=1)
    store.upsert_cached_decision("long", _flagged(), ttl=3600)
    store.save_idempotency_record("u1", "k", "fp", 201, {}, 1)

    summary = store.purge_expired_entries(datetime.now(timezone.utc) + timedelta(seconds=10))
    assert summary.cache_entries == 1
    assert summary.idempotency_records == 1
    assert store.get_cached_decision("long") is not None

    again = store.purge_expired_entries(datetime.now(timezone.utc) + timedelta(seconds=10))
    assert again.cache_entries == 0


# ── Audit ────────────────────────────────────────────────────────────


def test_audit_keeps_raw_text(stores):
    record = stores.moderation.insert_audit(7, "u1", "fp", _flagged())
    assert record.id

    [stored] = stores.moderation.get_audits(listing_id=7)
    assert stored.result.raw_response == '{"decision": "flagged"}'
    assert stored.user_id == "u1"
    assert stored.content_fingerprint == "fp"


def test_audit_limit_and_filters(stores):
    for i in range(5):
        stores.moderation.insert_audit(i, None, f"fp-{i % 2}", _flagged())
    assert len(stores.moderation.get_audits(limit=3)) == 3
    assert [a.listing_id for a in stores.moderation.get_audits(fingerprint="fp-0")] == [4, 2, 0]


# ── Violations ───────────────────────────────────────────────────────


def test_violation_deduplicated_per_user_and_fingerprint(stores):
    store = stores.moderation
    first = store.record_violation_if_new("u1", 1, "fp", _flagged(), threshold=3)
    again = store.record_violation_if_new("u1", 2, "fp", _flagged(), threshold=3)
    other_user = store.record_violation_if_new("u2", 3, "fp", _flagged(), threshold=3)

    assert first.inserted and first.count == 1
    assert not again.inserted and again.count == 1
    assert other_user.inserted and other_user.count == 1


def test_violation_threshold_flags_user(stores):
    store = stores.moderation
    outcomes = [store.record_violation_if_new("u1", i, f"fp-{i}", _flagged(), threshold=2) for i in range(2)]
    assert [o.threshold_reached for o in outcomes] == [False, True]
    assert stores.users.get("u1").is_flagged


def test_threshold_reported_from_count_not_flag(stores):
    store = stores.moderation
    stores.users.set_flag_status("u1", True)

    first = store.record_violation_if_new("u1", 1, "fp", _flagged(), threshold=3)
    again = store.record_violation_if_new("u1", 1, "fp", _flagged(), threshold=3)

    assert first.count == 1 and not first.threshold_reached
    assert not again.inserted and not again.threshold_reached
    assert stores.users.get("u1").is_flagged


def test_violation_history_newest_first(stores):
    store = stores.moderation
    for i in range(3):
        store.record_violation_if_new("u1", i, f"fp-{i}", _flagged(f"event {i}"))
    store.record_violation_if_new("u2", 9, "fp-x", _flagged())

    history = store.get_violation_history("u1")
    assert [e.listing_id for e in history] == [2, 1, 0]
    assert history[0].violations[0].code == "counterfeit"
    assert [e.listing_id for e in store.get_violation_history("u1", limit=1, offset=1)] == [1]


# ── Users ────────────────────────────────────────────────────────────


def test_unflag_keeps_count(stores):
    stores.users.upsert(UserRecord(id="u1", email="s@example.com"))
    stores.users.increment_violation_count("u1", threshold=1)
    assert stores.users.get("u1").is_flagged

    stores.users.set_flag_status("u1", False)
    user = stores.users.get("u1")
    assert not user.is_flagged
    assert user.violation_count == 1
    assert user.email == "s@example.com"


def test_set_flag_status_is_idempotent(stores):
    stores.users.set_flag_status("u1", True)
    stores.users.set_flag_status("u1", True)
    assert stores.users.violation_state("u1") == (0, True)


# ── Listings ─────────────────────────────────────────────────────────


def test_update_unknown_listing_raises(stores):
    with pytest.raises(ValueError):
        stores.listings.update_moderation_outcome(
            99, ListingStatus.ACTIVE, ListingModerationStatus.CLEAN, _flagged(), "fp"
        )


def test_moderation_queue_orders_oldest_first(stores):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    statuses = [
        ListingModerationStatus.FLAGGED,
        ListingModerationStatus.ERROR,
        ListingModerationStatus.CLEAN,
        ListingModerationStatus.PENDING_REVIEW,
    ]
    for i, status in enumerate(statuses, start=1):
        stores.listings.save(Listing(id=i, title=f"Item {i}"))
        stores.listings.update_moderation_outcome(
            i, ListingStatus.PENDING_REVIEW, status, _flagged(), f"fp-{i}", base - timedelta(minutes=i)
        )

    queue = stores.listings.get_moderation_queue()
    assert [l.id for l in queue] == [4, 2, 1]

    flagged_only = stores.listings.get_moderation_queue([ListingModerationStatus.FLAGGED])
    assert [l.id for l in flagged_only] == [1]


def test_override_approve_and_reject(stores):
    stores.listings.save(Listing(id=1, title="Held", status=ListingStatus.PENDING_REVIEW))
    stores.listings.save(Listing(id=2, title="Held too", status=ListingStatus.PENDING_REVIEW))

    approved = stores.listings.apply_moderation_override(1, True, "admin-1", "Looks genuine")
    rejected = stores.listings.apply_moderation_override(2, False, "admin-1")

    assert approved.status == ListingStatus.ACTIVE
    assert approved.moderation_status == ListingModerationStatus.APPROVED
    assert approved.moderation_summary == "Looks genuine"
    assert approved.moderated_by == "admin-1"
    assert rejected.status == ListingStatus.REJECTED
    assert rejected.moderation_status == ListingModerationStatus.REJECTED

    with pytest.raises(ValueError):
        stores.listings.apply_moderation_override(3, True, "admin-1")


# ── Notifications ────────────────────────────────────────────────────


def test_notifications_broadcast_to_publisher(tmp_path):
    from listing_guard.notify.notifier import NotificationStore

    published = []
    store = NotificationStore(tmp_path / "n", publisher=published.append)
    store.notify("u1", {"title": "quiet"})
    store.notify("u1", {"title": "loud", "listing_id": 3, "metadata": {"severity": "high"}}, broadcast=True)

    assert [n.title for n in published] == ["loud"]
    titles = [n.title for n in store.list_for_user("u1")]
    assert titles == ["loud", "quiet"]
    assert store.list_for_user("u2") == []


def test_email_skipped_without_smtp():
    from listing_guard.notify.email import EmailService

    service = EmailService()
    assert not service.configured
    assert service.send_moderation_blocked_email("seller@example.com", "Bike") is None


def test_email_body_is_neutral():
    from listing_guard.notify.email import EmailService

    message = EmailService.build_moderation_blocked_message("ts@example.com", "s@example.com", "Bike")
    body = message.get_content()
    assert '"Bike"' in body
    assert "counterfeit" not in body.lower()
    assert message["Subject"] == "Listing update: review required"


def test_source_survives_roundtrip():
    result = _flagged()
    result.source = ModerationSource.CACHE
    assert ModerationResult.from_dict(result.to_dict()).source == ModerationSource.CACHE


# ── Crash safety ─────────────────────────────────────────────────────


def test_failed_write_keeps_previous_document(stores, monkeypatch):
    import os

    stores.moderation.upsert_cached_decision("fp", _flagged("kept"), ttl=60)

    def fail_replace(src, dst):
        raise OSError("power cut")

    monkeypatch.setattr(os, "replace", fail_replace)
    with pytest.raises(OSError):
        stores.moderation.upsert_cached_decision("fp", _flagged("lost"), ttl=60)
    monkeypatch.undo()

    assert stores.moderation.get_cached_decision("fp").summary == "kept"
    leftovers = [p.name for p in stores.moderation._cache_path.parent.iterdir() if p.suffix == ".tmp"]
    assert leftovers == []


def test_write_json_atomic_replaces_file(tmp_path):
    from listing_guard.stores.files import write_json_atomic

    path = tmp_path / "doc.json"
    path.write_text("{not json")
    write_json_atomic(path, {"a": 1})
    assert json.loads(path.read_text()) == {"a": 1}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"]
