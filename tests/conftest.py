"""Shared fixtures with sample Huxley 2 JSON responses."""

from datetime import datetime

import pytest

from nexttrain.models import DepartureRecord, parse_status
from nexttrain.timeutil import LONDON


@pytest.fixture
def frozen_now():
    """Fixed 'current time' used by engine and time tests: 09:50:00 London."""
    return datetime(2026, 3, 10, 9, 50, 0, tzinfo=LONDON)


def make_departure(
    service_id="1",
    std="10:00",
    etd="On time",
    destination="Reading",
    platform="1",
    is_cancelled=False,
    alternate_ids=(),
):
    """Build a DepartureRecord directly, bypassing JSON parsing."""
    return DepartureRecord(
        service_id=service_id,
        alternate_ids=tuple(alternate_ids),
        scheduled_departure=std,
        status=parse_status(etd),
        platform=platform,
        destination_name=destination,
        destination_crs="",
        operator_name="South Western Railway",
        is_cancelled=is_cancelled,
    )


@pytest.fixture
def departure_factory():
    return make_departure


@pytest.fixture
def sample_service_raw():
    """A single on-time service from a Huxley departures board."""
    return {
        "serviceID": "1234567TWCKNHM_",
        "serviceIdUrlSafe": "1234567TWCKNHM_",
        "serviceIdGuid": "b7a1c0de-0000-0000-0000-000000000001",
        "rsid": "SW123400",
        "std": "10:00",
        "etd": "On time",
        "platform": "2",
        "operator": "South Western Railway",
        "operatorCode": "SW",
        "isCancelled": False,
        "destination": [{"locationName": "London Waterloo", "crs": "WAT", "via": None}],
        "origin": [{"locationName": "Reading", "crs": "RDG"}],
    }


@pytest.fixture
def sample_service_delayed():
    """A service running late with a known expected time and unconfirmed platform."""
    return {
        "serviceID": "2345678TWCKNHM_",
        "std": "10:05",
        "etd": "10:12",
        "platform": "3*",
        "operator": "South Western Railway",
        "isCancelled": False,
        "destination": [{"locationName": "London Waterloo", "crs": "WAT"}],
    }


@pytest.fixture
def sample_service_cancelled():
    """A cancelled service."""
    return {
        "serviceID": "3456789TWCKNHM_",
        "std": "10:10",
        "etd": "Cancelled",
        "platform": None,
        "operator": "South Western Railway",
        "isCancelled": True,
        "destination": [{"locationName": "London Waterloo", "crs": "WAT"}],
    }


@pytest.fixture
def sample_service_other_destination():
    """A service heading away from London, calling nowhere near Waterloo."""
    return {
        "serviceID": "4567890TWCKNHM_",
        "std": "10:02",
        "etd": "On time",
        "platform": "1",
        "operator": "South Western Railway",
        "isCancelled": False,
        "destination": [{"locationName": "Windsor & Eton Riverside", "crs": "WNR"}],
        "subsequentCallingPoints": [
            {"callingPoint": [
                {"locationName": "Staines", "crs": "SNS", "st": "10:15", "et": "On time"},
                {"locationName": "Windsor & Eton Riverside", "crs": "WNR", "st": "10:30", "et": "On time"},
            ]},
        ],
    }


@pytest.fixture
def sample_services_list(
    sample_service_raw,
    sample_service_delayed,
    sample_service_cancelled,
    sample_service_other_destination,
):
    """Mixed departures as raw trainServices dicts, in board order."""
    return [
        sample_service_raw,
        sample_service_other_destination,
        sample_service_delayed,
        sample_service_cancelled,
    ]


@pytest.fixture
def sample_arrivals_list():
    """Arrivals board at Waterloo from Twickenham."""
    return [
        {
            "serviceID": "1234567TWCKNHM_",
            "sta": "10:25",
            "eta": "On time",
            "isCancelled": False,
        },
        {
            "serviceID": "2345678TWCKNHM_",
            "sta": "10:30",
            "eta": "10:37",
            "isCancelled": False,
        },
    ]


@pytest.fixture
def sample_service_detail():
    """Service-detail reply with Waterloo among the subsequent calling points."""
    return {
        "serviceID": "1234567TWCKNHM_",
        "locationName": "Twickenham",
        "crs": "TWI",
        "std": "10:00",
        "etd": "On time",
        "previousCallingPoints": [
            {"callingPoint": [
                {"locationName": "Waterloo", "crs": "WAT", "st": "09:20", "et": "On time"},
            ]},
        ],
        "subsequentCallingPoints": [
            {"callingPoint": [
                {"locationName": "Richmond", "crs": "RMD", "st": "10:04", "et": "On time"},
                {"locationName": "Clapham Junction", "crs": "CLJ", "st": "10:15", "et": "On time"},
                {"locationName": "London Waterloo", "crs": "WAT", "st": "10:25", "et": "10:27"},
            ]},
        ],
    }


@pytest.fixture
def sample_config_yaml(tmp_path):
    """Create a temporary YAML config file."""
    yaml_content = """stations:
  origin: rdg
  origin_name: Reading
  destination: pad
  destination_name: London Paddington
  destination_names: ["London Paddington", "Paddington"]

refresh:
  interval_seconds: 60
  tick_seconds: 2
  departure_rows: 15

matching:
  strategy: hybrid
  arrival_source: detail
  window: 8
  disambiguation_window: 25
  max_results: 5
  detail_workers: 2

direction:
  default: inbound
  cutoff_hour: 15
  state_file: ""

api:
  timeout: 5
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml_content)
    return str(config_file)
