"""
Pytest configuration and shared fixtures.
"""

from typing import List

import pytest

from config.models import MeetingCandidate, Schedule, UserCandidate


def make_meeting(meeting_id: str, topic: str, host_id: str = 'h1') -> MeetingCandidate:
    """Meeting candidate with fixed start time."""
    return MeetingCandidate.from_record({
        'meeting_id': meeting_id,
        'topic': topic,
        'host_id': host_id,
        'start_time': '2023-01-01T10:00:00Z',
    })


@pytest.fixture
def meetings() -> List[MeetingCandidate]:
    """Small meeting snapshot with near-duplicate topics."""
    return [
        make_meeting('m1', 'TRIO TECHCORP L4 (ONLINE)', 'h1'),
        make_meeting('m2', 'DUO TECHCORP L4 (ONLINE)', 'h2'),
        make_meeting('m3', 'BVP - JUAN ALBERTO RIVERA - L9 (ONLINE)', 'h2'),
        make_meeting('m4', 'APP GROUP A L2', 'h1'),
        make_meeting('m5', 'APP GROUP B L2', 'h3'),
        make_meeting('m6', 'García López (PER)(ONLINE), María Fernanda', 'h3'),
    ]


@pytest.fixture
def users() -> List[UserCandidate]:
    """Hosts of the meeting snapshot."""
    return [
        UserCandidate('h1', 'ana@example.com', 'Ana', 'Pérez', 'Ana Pérez'),
        UserCandidate('h2', 'luis@example.com', 'Luis', 'Soto', ''),
        UserCandidate('h3', 'eva@example.com', 'Eva', 'Ruiz', 'Eva Ruiz'),
    ]


@pytest.fixture
def schedules() -> List[Schedule]:
    """Schedule batch covering every verdict."""
    return [
        Schedule(program='TRIO TECHCORP L4', date='2024-03-01', start_time='09:00', instructor='Ana Perez'),
        Schedule(program='APP L2', date='2024-03-01', start_time='10:00'),
        Schedule(program='QUARTERLY BOARD REVIEW', date='2024-03-01', start_time='11:00'),
        Schedule(program='DUO TECHCORP L4', date='2024-03-01', start_time='12:00', instructor='Ana Perez'),
    ]
