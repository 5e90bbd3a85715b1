"""
Transition scheduler tests - create and reconcile.

Covers:
    - four chained date phases produce exactly three transitions
    - switching to manual deletes uncompleted transitions
    - reconciliation is idempotent
    - date changes update pending transitions, never completed ones
    - date-based phase without end date is a configuration error
    - draft / publish status changes
"""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import ConfigurationError
from app.models import db
from app.models.decision import ProcessInstance, ScheduledTransition
from app.services.decision_service import create_instance_from_template, update_decision_instance
from app.services.schema_registry import save_template
from app.services.transition_scheduler import (
    build_expected_transitions,
    create_transitions_for_process,
    update_transitions_for_process,
)
from app.utils.helpers import as_utc


def _keys(instance):
    return sorted(t.key for t in instance.transitions)


def _transition(instance, from_phase, to_phase):
    return instance.transitions.filter_by(from_phase_id=from_phase, to_phase_id=to_phase).first()


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _all_manual():
    return [
        {"phaseId": p, "rules": {"advancement": {"method": "manual"}}}
        for p in ("submission", "review", "voting", "results")
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateTransitions:
    def test_four_date_phases_produce_three_transitions(self, published_instance):
        assert _keys(published_instance) == sorted([
            ("submission", "review"), ("review", "voting"), ("voting", "results"),
        ])
        review = _transition(published_instance, "submission", "review")
        assert as_utc(review.scheduled_date) == _utc(2026, 2, 1)
        assert review.completed_at is None

    def test_last_phase_never_produces_transition(self, published_instance):
        assert not published_instance.transitions.filter_by(from_phase_id="results").count()

    def test_draft_instance_has_no_transitions(self, chained_overrides):
        instance = create_instance_from_template("simple", name="Draft", phases=chained_overrides)

        assert instance.transitions.count() == 0

    def test_create_skips_existing_pairs(self, published_instance):
        result = create_transitions_for_process(published_instance)

        assert result["created"] == []
        assert result["skipped"] == 3

    def test_manual_phase_produces_no_transition(self, chained_overrides):
        overrides = chained_overrides
        overrides[1]["rules"] = {"advancement": {"method": "manual"}}

        instance = create_instance_from_template("simple", name="Mixed", phases=overrides, status="published")

        assert _keys(instance) == sorted([("submission", "review"), ("voting", "results")])

    def test_publishing_builtin_without_dates_fails(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_instance_from_template("simple", name="Undated", status="published")

        assert exc_info.value.phase_id == "submission"
        assert ProcessInstance.query.count() == 0
        assert ScheduledTransition.query.count() == 0

    def test_template_end_date_used_as_fallback(self):
        save_template({
            "id": "dated",
            "name": "Dated",
            "phases": [
                {"id": "open", "name": "Open",
                 "rules": {"advancement": {"method": "date", "endDate": "2026-06-01"}}},
                {"id": "closed", "name": "Closed"},
            ],
        })

        instance = create_instance_from_template("dated", name="Defaults", status="published")

        opened = _transition(instance, "open", "closed")
        assert as_utc(opened.scheduled_date) == _utc(2026, 6, 1)


class TestMissingEndDate:
    def _instance(self, phases):
        instance = ProcessInstance(
            process_template_id="ad-hoc",
            name="No template",
            current_phase_id=phases[0]["phaseId"],
            instance_data={"currentPhaseId": phases[0]["phaseId"], "phases": phases},
            status="published",
        )
        db.session.add(instance)
        db.session.commit()
        return instance

    def test_date_phase_without_end_date_raises(self):
        instance = self._instance([
            {"phaseId": "a", "rules": {"advancement": {"method": "date"}}},
            {"phaseId": "b", "rules": {}},
        ])

        with pytest.raises(ConfigurationError) as exc_info:
            build_expected_transitions(instance)

        assert exc_info.value.phase_id == "a"
        assert exc_info.value.process_instance_id == instance.id

    def test_unset_method_is_manual(self):
        instance = self._instance([{"phaseId": "a"}, {"phaseId": "b"}])

        assert build_expected_transitions(instance) == []

    def test_reconcile_leaves_rows_when_configuration_invalid(self):
        instance = self._instance([
            {"phaseId": "a", "endDate": "2026-01-01", "rules": {"advancement": {"method": "date"}}},
            {"phaseId": "b", "rules": {}},
        ])
        create_transitions_for_process(instance)

        data = dict(instance.instance_data)
        data["phases"] = [dict(data["phases"][0], endDate=None), data["phases"][1]]
        instance.instance_data = data
        db.session.commit()

        with pytest.raises(ConfigurationError):
            update_transitions_for_process(instance)
        assert instance.transitions.count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Reconcile
# ═════════════════════════════════════════════════════════════════════════════

class TestReconcileTransitions:
    def test_switch_to_manual_deletes_all(self, published_instance):
        _, counts = update_decision_instance(published_instance.id, phases=_all_manual())

        assert counts["deleted"] == 3
        assert counts["created"] == 0
        assert counts["updated"] == 0
        assert published_instance.transitions.count() == 0

    def test_reconcile_is_idempotent(self, published_instance):
        first = update_transitions_for_process(published_instance)
        second = update_transitions_for_process(published_instance)

        for counts in (first, second):
            assert (counts["created"], counts["updated"], counts["deleted"]) == (0, 0, 0)
        assert second["unchanged"] == 3

    def test_date_change_updates_pending_transition(self, published_instance):
        _, counts = update_decision_instance(
            published_instance.id, phases=[{"phaseId": "review", "endDate": "2026-03-15"}],
        )

        assert counts["updated"] == 1
        moved = _transition(published_instance, "review", "voting")
        assert as_utc(moved.scheduled_date) == _utc(2026, 3, 15)

    def test_completed_transition_never_moved(self, published_instance):
        done = _transition(published_instance, "submission", "review")
        done.completed_at = _utc(2026, 2, 1, 0, 5)
        db.session.commit()

        _, counts = update_decision_instance(
            published_instance.id, phases=[{"phaseId": "submission", "endDate": "2026-02-10"}],
        )

        assert counts["updated"] == 0
        assert counts["skipped"] == 1
        db.session.refresh(done)
        assert as_utc(done.scheduled_date) == _utc(2026, 2, 1)

    def test_completed_transition_never_deleted(self, published_instance):
        done = _transition(published_instance, "submission", "review")
        done.completed_at = _utc(2026, 2, 1, 0, 5)
        db.session.commit()

        _, counts = update_decision_instance(published_instance.id, phases=_all_manual())

        assert counts["deleted"] == 2
        assert counts["skipped"] == 1
        assert _keys(published_instance) == [("submission", "review")]

    def test_reenabling_date_phase_inserts(self, published_instance):
        update_decision_instance(published_instance.id, phases=_all_manual())

        _, counts = update_decision_instance(published_instance.id, phases=[
            {"phaseId": "voting", "rules": {"advancement": {"method": "date"}}},
        ])

        assert counts["created"] == 1
        assert _keys(published_instance) == [("voting", "results")]

    def test_expected_set_matches_persisted_keys(self, published_instance):
        update_decision_instance(published_instance.id, phases=[
            {"phaseId": "review", "rules": {"advancement": {"method": "manual"}}},
        ])

        expected = {t.key for t in build_expected_transitions(published_instance)}
        assert expected == set(_keys(published_instance))


class TestStatusChanges:
    def test_back_to_draft_removes_pending_transitions(self, published_instance):
        done = _transition(published_instance, "submission", "review")
        done.completed_at = _utc(2026, 2, 1)
        db.session.commit()

        _, counts = update_decision_instance(published_instance.id, status="draft")

        assert counts == {"deleted": 2}
        assert _keys(published_instance) == [("submission", "review")]

    def test_publishing_creates_transitions(self, chained_overrides):
        instance = create_instance_from_template("simple", name="Later", phases=chained_overrides)

        _, counts = update_decision_instance(instance.id, status="published")

        assert counts["created"] == 3
        assert ScheduledTransition.query.filter_by(process_instance_id=instance.id).count() == 3
