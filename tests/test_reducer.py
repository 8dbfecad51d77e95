"""Tests for the gate transition function."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Literal

import pytest

from depthgate.gate.events import (
    ConfigLoaded,
    EndpointAdopted,
    FetchEndpointFailed,
    FetchEndpointStarted,
    FetchEndpointSucceeded,
    FetchTrackingFailed,
    FetchTrackingSucceeded,
    GateEvent,
    Initialize,
    NavigateToMain,
    NavigateToWeb,
    NavigationReceived,
    NetworkStatusChanged,
    NotificationPermissionDenied,
    NotificationPermissionGranted,
    NotificationPromptDismissed,
    Timeout,
    TrackingReceived,
    ValidationFailed,
    ValidationStarted,
    ValidationSucceeded,
)
from depthgate.gate.reducer import reduce
from depthgate.gate.state import (
    ACTIVE_MODE,
    GateState,
    NotificationInfo,
    NotificationStatus,
    Phase,
    PhaseKind,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
URL = "https://web.example.com/start"


def apply(state, *events):
    for event in events:
        state = reduce(state, event, now=NOW)
    return state


def approved_state(**config_changes) -> GateState:
    state = apply(GateState.initial(), Initialize(), ValidationStarted(), ValidationSucceeded())
    if config_changes:
        state = replace(state, config=replace(state.config, **config_changes))
    return state


class TestLifecycle:
    """Tests for Initialize, ConfigLoaded and Timeout."""

    def test_initialize_moves_to_loading(self):
        state = apply(GateState.initial(), Initialize())
        assert state.phase.kind == PhaseKind.LOADING

    def test_initialize_twice_is_noop(self):
        state = apply(GateState.initial(), Initialize(), ValidationStarted())
        assert apply(state, Initialize()) is state

    def test_config_loaded_fills_config(self):
        event = ConfigLoaded(
            endpoint=URL,
            mode=ACTIVE_MODE,
            first_launch=False,
            tracking={"af_status": "Organic"},
            navigation={"deep_link_value": "x"},
            notifications_rejected=True,
            notifications_last_request=NOW - timedelta(days=1),
        )
        state = apply(GateState.initial(), event)
        assert state.config.endpoint == URL
        assert state.config.mode == ACTIVE_MODE
        assert state.config.first_launch is False
        assert state.config.tracking.is_organic
        assert state.config.navigation.data["deep_link_value"] == "x"
        assert state.config.notifications.status == NotificationStatus.REJECTED
        assert state.phase.kind == PhaseKind.START

    def test_config_loaded_keeps_existing_endpoint(self):
        """An endpoint, once set, is never replaced."""
        state = apply(GateState.initial(), ConfigLoaded(endpoint=URL))
        state = apply(state, ConfigLoaded(endpoint="https://other.example.com"))
        assert state.config.endpoint == URL

    def test_config_loaded_never_restores_first_launch(self):
        state = apply(GateState.initial(), ConfigLoaded(first_launch=False))
        state = apply(state, ConfigLoaded(first_launch=True))
        assert state.config.first_launch is False

    def test_timeout_pauses(self):
        state = apply(GateState.initial(), Initialize(), Timeout())
        assert state.phase.kind == PhaseKind.PAUSED
        assert state.ui.navigate_main
        assert not state.ui.navigate_web

    def test_timeout_after_running_is_noop(self):
        state = apply(approved_state(), FetchEndpointSucceeded(endpoint=URL))
        assert apply(state, Timeout()) is state


class TestAttributionEvents:
    """Tests for tracking and navigation payloads."""

    def test_tracking_replaces_record(self):
        state = apply(
            GateState.initial(),
            TrackingReceived(data={"af_status": "Non-organic", "media_source": "fb"}),
        )
        assert state.config.tracking.data == {
            "af_status": "Non-organic",
            "media_source": "fb",
        }

    def test_fetched_tracking_replaces_record(self):
        state = apply(
            GateState.initial(),
            TrackingReceived(data={"af_status": "Organic"}),
            FetchTrackingSucceeded(data={"af_status": "Non-organic"}),
        )
        assert not state.config.tracking.is_organic

    def test_navigation_stored(self):
        state = apply(GateState.initial(), NavigationReceived(data={"c": "promo"}))
        assert state.config.navigation.data == {"c": "promo"}

    def test_network_loss_shows_offline_view(self):
        state = apply(GateState.initial(), NetworkStatusChanged(connected=False))
        assert state.ui.show_offline_view
        state = apply(state, NetworkStatusChanged(connected=True))
        assert not state.ui.show_offline_view


class TestValidation:
    """Tests for the validation phase changes."""

    def test_validation_success_approves(self):
        assert approved_state().phase.kind == PhaseKind.APPROVED

    def test_validation_started_moves_to_checking(self):
        state = apply(GateState.initial(), Initialize(), ValidationStarted())
        assert state.phase.kind == PhaseKind.CHECKING

    def test_validation_failure_pauses(self):
        state = apply(GateState.initial(), Initialize(), ValidationStarted(), ValidationFailed())
        assert state.phase == Phase.paused()
        assert state.ui.navigate_main

    def test_validation_ignored_when_terminal(self):
        state = apply(GateState.initial(), Initialize(), Timeout())
        assert apply(state, ValidationSucceeded()).phase.kind == PhaseKind.PAUSED
        assert apply(state, ValidationStarted()).phase.kind == PhaseKind.PAUSED

    def test_organic_fetch_failure_pauses(self):
        state = apply(approved_state(), FetchTrackingFailed())
        assert state.phase.kind == PhaseKind.PAUSED


class TestEndpointResolution:
    """Tests for endpoint success, failure and adoption."""

    def test_success_runs_with_prompt(self):
        state = apply(approved_state(), FetchEndpointStarted(), FetchEndpointSucceeded(endpoint=URL))
        assert state.phase == Phase.running(URL)
        assert state.config.endpoint == URL
        assert state.config.mode == ACTIVE_MODE
        assert state.config.first_launch is False
        assert state.ui.show_notification_prompt
        assert not state.ui.navigate_web

    def test_success_skips_prompt_when_answered(self):
        state = approved_state(
            notifications=NotificationInfo(status=NotificationStatus.APPROVED)
        )
        state = apply(state, FetchEndpointSucceeded(endpoint=URL))
        assert not state.ui.show_notification_prompt
        assert state.ui.navigate_web

    def test_success_skips_prompt_during_cooldown(self):
        state = approved_state(
            notifications=NotificationInfo(last_request=NOW - timedelta(days=1))
        )
        state = apply(state, FetchEndpointSucceeded(endpoint=URL))
        assert state.ui.navigate_web

    def test_success_runs_on_resolved_endpoint(self):
        """A newly resolved endpoint replaces the saved one."""
        state = approved_state(endpoint=URL)
        state = apply(state, FetchEndpointSucceeded(endpoint="https://new.example.com"))
        assert state.phase == Phase.running("https://new.example.com")
        assert state.config.endpoint == "https://new.example.com"

    def test_success_after_lock_keeps_endpoint(self):
        state = apply(approved_state(), FetchEndpointSucceeded(endpoint=URL))
        state = apply(state, FetchEndpointSucceeded(endpoint="https://late.example.com"))
        assert state.phase == Phase.running(URL)
        assert state.config.endpoint == URL

    def test_failure_with_saved_endpoint_runs(self):
        state = apply(approved_state(endpoint=URL), FetchEndpointFailed())
        assert state.phase == Phase.running(URL)

    def test_failure_without_saved_endpoint_pauses(self):
        state = apply(approved_state(), FetchEndpointFailed())
        assert state.phase.kind == PhaseKind.PAUSED
        assert state.ui.navigate_main

    def test_adopted_endpoint_runs_without_saving(self):
        state = apply(approved_state(), EndpointAdopted(endpoint=URL, source="staged"))
        assert state.phase == Phase.running(URL)
        assert state.config.endpoint is None

    def test_late_success_after_pause_is_ignored(self):
        """First terminal decision wins."""
        state = apply(approved_state(), Timeout())
        late = apply(state, FetchEndpointSucceeded(endpoint=URL))
        assert late.phase.kind == PhaseKind.PAUSED
        assert late.ui.navigate_main and not late.ui.navigate_web


class TestNotificationAnswers:
    """Tests for prompt answers."""

    def running_with_prompt(self):
        return apply(approved_state(), FetchEndpointSucceeded(endpoint=URL))

    def test_granted(self):
        state = apply(self.running_with_prompt(), NotificationPermissionGranted())
        assert state.config.notifications.status == NotificationStatus.APPROVED
        assert state.config.notifications.last_request == NOW
        assert not state.ui.show_notification_prompt
        assert state.ui.navigate_web

    def test_denied_still_navigates_web(self):
        state = apply(self.running_with_prompt(), NotificationPermissionDenied())
        assert state.config.notifications.status == NotificationStatus.REJECTED
        assert state.ui.navigate_web

    def test_dismissed_starts_cooldown(self):
        state = apply(self.running_with_prompt(), NotificationPromptDismissed())
        notifications = state.config.notifications
        assert notifications.status == NotificationStatus.NOT_ASKED
        assert notifications.last_request == NOW
        assert not notifications.can_ask(NOW + timedelta(days=2))
        assert state.ui.navigate_web

    def test_answer_outside_web_flow_does_not_navigate(self):
        state = apply(GateState.initial(), Initialize(), Timeout(), NotificationPermissionGranted())
        assert not state.ui.navigate_web
        assert state.ui.navigate_main


class TestNavigation:
    """Tests for explicit navigation events."""

    def test_navigate_main_pauses(self):
        state = apply(approved_state(), NavigateToMain())
        assert state.phase.kind == PhaseKind.PAUSED
        assert state.ui.navigate_main

    def test_navigate_web_requires_running(self):
        state = apply(approved_state(), NavigateToWeb())
        assert not state.ui.navigate_web

        running = apply(approved_state(), FetchEndpointSucceeded(endpoint=URL))
        assert apply(running, NavigateToWeb()).ui.navigate_web

    def test_unknown_event_rejected(self):
        class Unregistered(GateEvent):
            event_type: Literal["unregistered"] = "unregistered"

        with pytest.raises(TypeError):
            reduce(GateState.initial(), Unregistered(), now=NOW)
