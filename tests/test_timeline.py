"""
Unit tests for timeline reconciliation.

reconcile() is pure, so these tests need no network or event loop.
"""

import json

import pytest

from provtrack.models import (
    Condition,
    JobState,
    Milestone,
    SignalSource,
    StepDefinition,
    StepStatus,
)
from provtrack.timeline import (
    CLUSTER_STEPS,
    WORKSPACE_STEPS,
    compute_active_index,
    find_signal,
    reconcile,
)

STEP_IDS = [step.id for step in CLUSTER_STEPS]


class TestStepCatalogs:
    """Tests for the shipped step catalogs."""

    def test_cluster_steps_order(self):
        assert STEP_IDS == [
            "SPEC_SUBMITTED",
            "PULUMI_REFRESH",
            "PULUMI_APPLY",
            "SECRETS_SYNCED",
            "REGISTRATION_COMPLETE",
        ]

    def test_every_step_has_default_message(self):
        for step in CLUSTER_STEPS + WORKSPACE_STEPS:
            assert step.label
            assert step.default_message


class TestReconcileWithoutSignals:
    """Tests for steps with no live signal."""

    def test_absent_state_is_all_pending(self):
        """Before the first poll every step is pending and focus is on step 0."""
        timeline = reconcile(CLUSTER_STEPS, None)

        assert timeline.statuses == [StepStatus.PENDING] * len(CLUSTER_STEPS)
        assert timeline.active_index == 0
        for step, definition in zip(timeline.steps, CLUSTER_STEPS):
            assert step.message == definition.default_message
            assert step.source == SignalSource.NONE

    def test_unmatched_steps_stay_pending_regardless_of_phase(self, state_factory):
        """Overall phase/progress does not infer downstream completion."""
        state = state_factory("RUNNING", phase="Apply", progress=80)

        timeline = reconcile(CLUSTER_STEPS, state)

        assert timeline.statuses == [StepStatus.PENDING] * len(CLUSTER_STEPS)

    def test_empty_catalog(self, state_factory):
        timeline = reconcile([], state_factory("RUNNING"))
        assert timeline.steps == ()
        assert timeline.active_index == 0


class TestMilestoneMatching:
    """Tests for milestone-based classification."""

    def test_first_poll_scenario(self, state_factory):
        """SUBMITTED job with SPEC_SUBMITTED in progress focuses step 0."""
        state = state_factory("SUBMITTED", milestones=[("SPEC_SUBMITTED", "IN_PROGRESS")])

        timeline = reconcile(CLUSTER_STEPS, state)

        assert timeline.get("SPEC_SUBMITTED").status == StepStatus.ACTIVE
        assert timeline.active_index == 0

    @pytest.mark.parametrize(
        "milestone_status,expected",
        [
            ("COMPLETE", StepStatus.COMPLETE),
            ("IN_PROGRESS", StepStatus.ACTIVE),
            ("ERROR", StepStatus.ERROR),
            ("PENDING", StepStatus.PENDING),
            ("SOMETHING_NEW", StepStatus.PENDING),
        ],
    )
    def test_milestone_status_mapping(self, state_factory, milestone_status, expected):
        state = state_factory("RUNNING", milestones=[("PULUMI_APPLY", milestone_status)])
        assert reconcile(CLUSTER_STEPS, state).get("PULUMI_APPLY").status == expected

    def test_match_by_label_fallback(self):
        """A milestone without a matching id is matched by label."""
        state = JobState(
            id="job-1",
            status="RUNNING",
            milestones=(Milestone(id="m-42", label="  secrets SYNCED ", status="COMPLETE"),),
        )

        step = reconcile(CLUSTER_STEPS, state).get("SECRETS_SYNCED")

        assert step.status == StepStatus.COMPLETE
        assert step.source == SignalSource.MILESTONE

    def test_id_match_beats_label_match(self):
        state = JobState(
            id="job-1",
            status="RUNNING",
            milestones=(
                Milestone(id="other", label="Apply", status="ERROR"),
                Milestone(id="PULUMI_APPLY", label="", status="COMPLETE"),
            ),
        )
        assert reconcile(CLUSTER_STEPS, state).get("PULUMI_APPLY").status == StepStatus.COMPLETE

    def test_message_prefers_details_then_label(self):
        state = JobState(
            id="job-1",
            status="RUNNING",
            milestones=(
                Milestone(id="PULUMI_REFRESH", label="Refresh", status="COMPLETE",
                          details="12 resources unchanged", timestamp="2024-03-21T12:04:11Z"),
                Milestone(id="PULUMI_APPLY", label="Applying stack", status="IN_PROGRESS"),
            ),
        )

        timeline = reconcile(CLUSTER_STEPS, state)

        assert timeline.get("PULUMI_REFRESH").message == "12 resources unchanged"
        assert timeline.get("PULUMI_REFRESH").timestamp == "2024-03-21T12:04:11Z"
        assert timeline.get("PULUMI_APPLY").message == "Applying stack"


class TestConditionMatching:
    """Tests for condition-based classification."""

    @pytest.mark.parametrize(
        "condition_status,expected",
        [
            ("True", StepStatus.COMPLETE),
            ("False", StepStatus.ERROR),
            ("Unknown", StepStatus.ACTIVE),
            ("Maybe", StepStatus.PENDING),
        ],
    )
    def test_condition_status_mapping(self, state_factory, condition_status, expected):
        state = state_factory("RUNNING", conditions=[("SECRETS_SYNCED", condition_status)])
        assert reconcile(CLUSTER_STEPS, state).get("SECRETS_SYNCED").status == expected

    def test_condition_matched_by_label(self):
        state = JobState(
            id="job-1",
            status="RUNNING",
            conditions=(
                Condition(type="Registration complete", status="True", message="Registered",
                          reason="Joined", last_transition_time="2024-03-22T08:21:03Z"),
            ),
        )

        step = reconcile(CLUSTER_STEPS, state).get("REGISTRATION_COMPLETE")

        assert step.status == StepStatus.COMPLETE
        assert step.message == "Registered"
        assert step.reason == "Joined"
        assert step.timestamp == "2024-03-22T08:21:03Z"
        assert step.source == SignalSource.CONDITION

    def test_condition_without_message_uses_default(self, state_factory):
        state = state_factory("RUNNING", conditions=[("PULUMI_REFRESH", "Unknown")])
        step = reconcile(CLUSTER_STEPS, state).get("PULUMI_REFRESH")
        assert step.message == CLUSTER_STEPS[1].default_message

    def test_milestone_wins_over_condition(self, state_factory):
        """Milestones are authoritative when both signals cover a step."""
        state = state_factory(
            "RUNNING",
            milestones=[("PULUMI_APPLY", "IN_PROGRESS")],
            conditions=[("PULUMI_APPLY", "False")],
        )

        step = reconcile(CLUSTER_STEPS, state).get("PULUMI_APPLY")

        assert step.status == StepStatus.ACTIVE
        assert step.source == SignalSource.MILESTONE

    def test_find_signal_returns_tagged_variant(self, state_factory):
        state = state_factory("RUNNING", conditions=[("PULUMI_APPLY", "True")])
        signal = find_signal(CLUSTER_STEPS[2], state)
        assert signal.source == SignalSource.CONDITION
        assert find_signal(CLUSTER_STEPS[0], state) is None
        assert find_signal(CLUSTER_STEPS[0], None) is None


class TestFailureDemotion:
    """Tests for the failed-job override."""

    def test_in_progress_step_demoted_on_failed_job(self, state_factory):
        state = state_factory(
            "FAILED",
            milestones=[("SPEC_SUBMITTED", "COMPLETE"), ("PULUMI_APPLY", "IN_PROGRESS")],
        )

        timeline = reconcile(CLUSTER_STEPS, state)

        assert timeline.get("PULUMI_APPLY").status == StepStatus.ERROR
        assert timeline.get("SPEC_SUBMITTED").status == StepStatus.COMPLETE

    def test_unknown_condition_demoted_case_insensitively(self, state_factory):
        state = state_factory("failed", conditions=[("SECRETS_SYNCED", "Unknown")])
        assert reconcile(CLUSTER_STEPS, state).get("SECRETS_SYNCED").status == StepStatus.ERROR

    def test_in_progress_step_demoted_on_cancelled_job(self, state_factory):
        state = state_factory("CANCELLED", milestones=[("SPEC_SUBMITTED", "IN_PROGRESS")])

        timeline = reconcile(CLUSTER_STEPS, state)

        assert timeline.get("SPEC_SUBMITTED").status == StepStatus.ERROR
        assert timeline.active_index == 0

    def test_unknown_condition_demoted_on_canceled_job(self, state_factory):
        state = state_factory("canceled", conditions=[("SECRETS_SYNCED", "Unknown")])
        assert reconcile(CLUSTER_STEPS, state).get("SECRETS_SYNCED").status == StepStatus.ERROR

    def test_pending_steps_not_demoted(self, state_factory):
        state = state_factory("FAILED", milestones=[("PULUMI_APPLY", "PENDING")])
        timeline = reconcile(CLUSTER_STEPS, state)
        assert timeline.get("PULUMI_APPLY").status == StepStatus.PENDING
        assert timeline.get("PULUMI_REFRESH").status == StepStatus.PENDING

    def test_running_job_keeps_active_step(self, state_factory):
        state = state_factory("RUNNING", milestones=[("PULUMI_APPLY", "IN_PROGRESS")])
        assert reconcile(CLUSTER_STEPS, state).get("PULUMI_APPLY").status == StepStatus.ACTIVE


class TestActiveIndex:
    """Tests for active index selection."""

    def test_first_active_step_wins(self):
        statuses = [StepStatus.COMPLETE, StepStatus.ACTIVE, StepStatus.ACTIVE]
        assert compute_active_index(statuses) == 1

    def test_one_past_last_complete(self):
        statuses = [StepStatus.COMPLETE, StepStatus.PENDING, StepStatus.COMPLETE,
                    StepStatus.PENDING]
        assert compute_active_index(statuses) == 3

    def test_all_complete_points_past_the_end(self, state_factory):
        state = state_factory("SUCCEEDED", milestones=[(s, "COMPLETE") for s in STEP_IDS])
        timeline = reconcile(CLUSTER_STEPS, state)
        assert timeline.active_index == len(CLUSTER_STEPS)

    def test_nothing_started(self):
        assert compute_active_index([StepStatus.PENDING, StepStatus.ERROR]) == 0


class TestDeterminism:
    """reconcile() must be side-effect free and repeatable."""

    def test_identical_inputs_identical_output(self, state_factory):
        state = state_factory(
            "RUNNING",
            milestones=[("SPEC_SUBMITTED", "COMPLETE"), ("PULUMI_REFRESH", "IN_PROGRESS")],
            conditions=[("SECRETS_SYNCED", "Unknown")],
        )

        first = reconcile(CLUSTER_STEPS, state)
        second = reconcile(CLUSTER_STEPS, state)

        assert first == second
        assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(
            second.to_dict(), sort_keys=True
        )

    def test_custom_catalog(self, state_factory):
        steps = [StepDefinition("A", "Alpha", "waiting"), StepDefinition("B", "Beta", "later")]
        state = state_factory("RUNNING", milestones=[("A", "COMPLETE")])

        timeline = reconcile(steps, state)

        assert timeline.statuses == [StepStatus.COMPLETE, StepStatus.PENDING]
        assert timeline.active_index == 1
