"""Tests for nexttrain.app."""

import io
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from nexttrain.api import HuxleyClient, RefreshCancelled
from nexttrain.app import BoardApp, render_board
from nexttrain.config import load_config
from nexttrain.direction import Direction, DirectionStore
from nexttrain.models import ArrivalInfo, ArrivalTag, ServiceStatus

from conftest import make_departure


@pytest.fixture
def config(tmp_path):
    config = load_config(yaml_path="/nonexistent.yaml", cli_args=[])
    config.direction.default = "outbound"
    config.direction.state_file = str(tmp_path / "direction.yaml")
    return config


@pytest.fixture
def client():
    client = MagicMock(spec=HuxleyClient)
    client.fetch_departure_records.return_value = [
        make_departure(service_id="1", std="10:00"),
        make_departure(service_id="2", std="10:05", is_cancelled=True),
    ]
    client.fetch_arrival_infos.return_value = [
        ArrivalInfo(service_id="1", scheduled_arrival="10:30", status=ServiceStatus.on_time()),
    ]
    return client


@pytest.fixture
def app(config, client):
    return BoardApp(config, client=client, out=io.StringIO())


class TestInitialDirection:
    """Tests for choosing the starting direction."""

    def test_pinned(self, app):
        """Verify that a configured default wins."""
        assert app.session.direction is Direction.OUTBOUND

    def test_saved_used_when_not_pinned(self, config, client):
        """Verify that the persisted choice is used when no default is pinned."""
        config.direction.default = None
        DirectionStore(config.direction.state_file).save(Direction.INBOUND)
        assert BoardApp(config, client=client).session.direction is Direction.INBOUND


class TestRefresh:
    """Tests for BoardApp.refresh() running one cycle."""

    def test_publishes_ranked_trains(self, app, client, frozen_now):
        """Verify that a cycle fetches, resolves and publishes results."""
        assert app.refresh(now=frozen_now) is True

        client.fetch_departure_records.assert_called_once_with(
            "TWI", "WAT", "downstream", 20, ["London Waterloo"], now=frozen_now,
        )
        client.fetch_arrival_infos.assert_called_once_with("WAT", "TWI", 20)
        assert [t.service_id for t in app.session.trains] == ["1"]
        assert app.session.trains[0].arrival_tag is ArrivalTag.CONFIRMED
        assert app.session.fetch_ok is True
        assert app.session.tick_started is not None
        assert app.session.last_update == frozen_now

    def test_inbound_swaps_stations(self, config, client, frozen_now):
        """Verify that the inbound direction queries the reverse pair."""
        config.direction.default = "inbound"
        config.stations.destination_group = []
        app = BoardApp(config, client=client)
        app.refresh(now=frozen_now)
        args = client.fetch_departure_records.call_args[0]
        assert args[:2] == ("WAT", "TWI")
        assert args[4] == ["Twickenham"]
        client.fetch_arrival_infos.assert_called_once_with("TWI", "WAT", 20)

    def test_malformed_departures_reply_fails_cycle(self, config, frozen_now):
        """Verify that a departures reply that is not a board fails the cycle instead of crashing."""
        app = BoardApp(config, client=HuxleyClient(config))
        with patch("nexttrain.api.requests.Session.get") as mock_get:
            mock_get.return_value.json.return_value = ["not", "a", "board"]
            assert app.refresh(now=frozen_now) is False
        assert app.session.fetch_ok is False
        assert app.session.trains == []

    def test_departures_failure_is_fatal_to_cycle(self, app, client, frozen_now):
        """Verify that a failed departures fetch clears results and marks the session failed."""
        app.refresh(now=frozen_now)
        client.fetch_departure_records.side_effect = requests.exceptions.ConnectionError("down")

        assert app.refresh(now=frozen_now) is False
        assert app.session.fetch_ok is False
        assert app.session.trains == []

    def test_recovers_after_failure(self, app, client, frozen_now):
        """Verify that the next successful cycle clears the failed state."""
        client.fetch_departure_records.side_effect = requests.exceptions.Timeout("slow")
        app.refresh(now=frozen_now)
        client.fetch_departure_records.side_effect = None
        assert app.refresh(now=frozen_now) is True
        assert app.session.fetch_ok is True

    def test_detail_source_fans_out_over_live_candidates(self, app, config, client, frozen_now):
        """Verify that the detail source looks up only non-cancelled candidates."""
        config.matching.arrival_source = "detail"
        client.fetch_service_arrivals.return_value = []

        app.refresh(now=frozen_now)

        client.fetch_arrival_infos.assert_not_called()
        candidates, destination, workers, cancel = client.fetch_service_arrivals.call_args[0]
        assert [c.service_id for c in candidates] == ["1"]
        assert destination == "WAT"
        assert workers == 4
        assert isinstance(cancel, threading.Event)
        assert app.session.trains[0].arrival_tag is ArrivalTag.UNKNOWN

    def test_cancelled_cycle_discarded(self, app, config, client, frozen_now):
        """Verify that a superseded cycle publishes nothing and keeps the previous results."""
        app.refresh(now=frozen_now)
        previous = list(app.session.trains)
        config.matching.arrival_source = "detail"
        client.fetch_service_arrivals.side_effect = RefreshCancelled("superseded")

        assert app.refresh(now=frozen_now) is False
        assert app.session.trains == previous
        assert app.session.tick_started is None


class TestTriggers:
    """Tests for manual, visibility and direction triggers."""

    def test_request_refresh_cancels_in_flight(self, app):
        """Verify that a manual refresh sets the in-flight cancel event and is due."""
        in_flight = app._cancel
        app.request_refresh()
        assert in_flight.is_set()
        assert app._due() is True

    def test_refresh_clears_request(self, app, frozen_now):
        """Verify that running a cycle consumes the pending request with a fresh cancel event."""
        app.request_refresh()
        app.refresh(now=frozen_now)
        assert app._refresh_requested is False
        assert not app._cancel.is_set()

    def test_switch_direction_persists(self, app, config):
        """Verify that switching toggles, saves and requests a refresh."""
        assert app.switch_direction() is Direction.INBOUND
        assert DirectionStore(config.direction.state_file).load() is Direction.INBOUND
        assert app._refresh_requested is True
        assert app.session.trains == []

    def test_hidden_suspends_periodic_refresh(self, app, frozen_now):
        """Verify that hiding stops the tick and suspends periodic refresh."""
        app.refresh(now=frozen_now)
        app.session.last_refresh = 0.0
        app.set_visible(False)
        assert app.session.tick_started is None
        assert app._due() is False

    def test_visible_again_refreshes_immediately(self, app, frozen_now):
        """Verify that returning to visibility requests an immediate refresh."""
        app.refresh(now=frozen_now)
        app.set_visible(False)
        app.set_visible(True)
        assert app._due() is True

    def test_visible_when_already_visible_is_noop(self, app, frozen_now):
        """Verify that a redundant visibility event does not force a refresh."""
        app.refresh(now=frozen_now)
        app.set_visible(True)
        assert app._refresh_requested is False

    def test_switch_request_acted_on_by_loop(self, app, config):
        """Verify that a switch request only sets flags until the loop handles it."""
        in_flight = app._cancel
        app.request_switch()
        assert in_flight.is_set()
        assert app.session.direction is Direction.OUTBOUND
        assert DirectionStore(config.direction.state_file).load() is None

        app._handle_requests()

        assert app.session.direction is Direction.INBOUND
        assert DirectionStore(config.direction.state_file).load() is Direction.INBOUND
        assert app._switch_requested is False
        assert app._due() is True

    def test_resume_request_forces_refresh(self, app, frozen_now):
        """Verify that resuming after a stop is handled as becoming visible again."""
        app.refresh(now=frozen_now)
        app._resume_requested = True
        app._handle_requests()
        assert app.session.visible is True
        assert app._due() is True


class TestRenderBoard:
    """Tests for render_board() text output."""

    def test_trains(self, app, config, frozen_now):
        """Verify that header, train row, countdown and update time are rendered."""
        app.refresh(now=frozen_now)
        text = render_board(app.session, config, now=frozen_now)
        assert text.startswith("TWICKENHAM → LONDON WATERLOO")
        assert "10:00" in text
        assert "10:30" in text
        assert "30 mins" in text
        assert "Plat 1" in text
        assert "On time" in text
        assert "10m" in text
        assert "Reading · South Western Railway" in text
        assert "Updated 09:50:00" in text

    def test_refreshing_hides_countdown(self, app, config, frozen_now):
        """Verify that countdowns are not shown while the tick is stopped."""
        app.refresh(now=frozen_now)
        app.session.begin_cycle()
        assert "..." in render_board(app.session, config, now=frozen_now)

    def test_error_state(self, app, config, client, frozen_now):
        """Verify that a failed cycle renders the error/retry message."""
        client.fetch_departure_records.side_effect = requests.exceptions.ConnectionError("down")
        app.refresh(now=frozen_now)
        assert "Unable to load trains" in render_board(app.session, config, now=frozen_now)

    def test_no_trains(self, app, config, client, frozen_now):
        """Verify the empty state after a successful cycle with no services."""
        client.fetch_departure_records.return_value = []
        app.refresh(now=frozen_now)
        assert "No trains found" in render_board(app.session, config, now=frozen_now)

    def test_unknown_arrival_hint(self, app, config, client, frozen_now):
        """Verify that unknown arrivals tell the passenger to check at the station."""
        client.fetch_arrival_infos.return_value = []
        app.refresh(now=frozen_now)
        assert "check at station" in render_board(app.session, config, now=frozen_now)

    def test_draw_writes_to_stream(self, app, frozen_now):
        """Verify that _draw() writes the board to the configured stream."""
        app.refresh(now=frozen_now)
        app._draw()
        assert "TWICKENHAM" in app.out.getvalue()

    @pytest.mark.parametrize("std,colour", [("09:51", "\033[31m"), ("09:54", "\033[33m")])
    def test_urgency_colour(self, app, config, client, frozen_now, std, colour):
        """Verify that imminent departures get a red or yellow countdown when colour is on."""
        client.fetch_departure_records.return_value = [make_departure(service_id="1", std=std)]
        app.refresh(now=frozen_now)
        assert colour in render_board(app.session, config, now=frozen_now, color=True)
        assert "\033[" not in render_board(app.session, config, now=frozen_now)

    def test_no_colour_when_not_urgent(self, app, config, frozen_now):
        """Verify that a train ten minutes away is not highlighted."""
        app.refresh(now=frozen_now)
        assert "\033[" not in render_board(app.session, config, now=frozen_now, color=True)


class TestInboundStationGroup:
    """Tests for inbound refreshes merging several destination-end boards."""

    @pytest.fixture
    def inbound(self, config, client):
        config.direction.default = "inbound"
        return BoardApp(config, client=client)

    @staticmethod
    def _boards(boards):
        """side_effect for fetch_departure_records: departures (or an error) per origin."""
        def _fetch(from_crs, *args, **kwargs):
            result = boards[from_crs]
            if isinstance(result, Exception):
                raise result
            return result
        return _fetch

    def test_queries_every_station(self, inbound, client, frozen_now):
        """Verify that the destination and each group station are queried toward the origin."""
        client.fetch_departure_records.side_effect = self._boards({"WAT": [], "VIC": [], "CLJ": []})
        inbound.refresh(now=frozen_now)
        assert [c.args[0] for c in client.fetch_departure_records.call_args_list] == ["WAT", "VIC", "CLJ"]
        assert all(c.args[1] == "TWI" for c in client.fetch_departure_records.call_args_list)
        assert [c.args[1] for c in client.fetch_arrival_infos.call_args_list] == ["WAT", "VIC", "CLJ"]

    def test_merged_and_ranked_by_arrival(self, inbound, client, frozen_now):
        """Verify that trains from all boards are ranked together and truncated."""
        client.fetch_departure_records.side_effect = self._boards({
            "WAT": [make_departure(service_id="W", std="10:00")],
            "VIC": [make_departure(service_id="V", std="10:02")],
            "CLJ": [make_departure(service_id="C", std="10:04")],
        })
        client.fetch_arrival_infos.return_value = [
            ArrivalInfo(service_id="W", scheduled_arrival="10:30", status=ServiceStatus.on_time()),
            ArrivalInfo(service_id="V", scheduled_arrival="10:25", status=ServiceStatus.on_time()),
            ArrivalInfo(service_id="C", scheduled_arrival="10:35", status=ServiceStatus.on_time()),
        ]
        inbound.config.matching.max_results = 2

        assert inbound.refresh(now=frozen_now) is True
        assert [t.service_id for t in inbound.session.trains] == ["V", "C"]

    def test_one_station_failing_degrades(self, inbound, client, frozen_now):
        """Verify that a failed board is skipped and the others are still published."""
        client.fetch_departure_records.side_effect = self._boards({
            "WAT": requests.exceptions.ConnectionError("down"),
            "VIC": [make_departure(service_id="V", std="10:02")],
            "CLJ": ValueError("Unexpected board reply: list"),
        })
        assert inbound.refresh(now=frozen_now) is True
        assert inbound.session.fetch_ok is True
        assert [t.service_id for t in inbound.session.trains] == ["V"]

    def test_all_stations_failing_fails_cycle(self, inbound, client, frozen_now):
        """Verify that the cycle only fails when every board fails."""
        client.fetch_departure_records.side_effect = requests.exceptions.Timeout("slow")
        assert inbound.refresh(now=frozen_now) is False
        assert inbound.session.fetch_ok is False
        assert client.fetch_departure_records.call_count == 3

    def test_header_lists_group(self, inbound, config, frozen_now):
        """Verify that the inbound header names the extra stations."""
        text = render_board(inbound.session, config, now=frozen_now)
        assert text.startswith("LONDON WATERLOO (+VIC, CLJ) → TWICKENHAM")
