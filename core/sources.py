"""Bulk-read adapters providing meeting and host snapshots."""

from typing import Any, Callable, Dict, List, Mapping, Protocol, Type, TypeVar
import logging

from config.models import MeetingCandidate, UserCandidate

logger = logging.getLogger(__name__)

T = TypeVar('T', MeetingCandidate, UserCandidate)

# fetch_page(table, offset, limit) -> rows
PageFetcher = Callable[[str, int, int], List[Mapping[str, Any]]]


class DataFetchError(Exception):
    """A dataset could not be read completely."""


class CandidateSource(Protocol):
    """Collaborator supplying complete candidate snapshots."""

    def fetch_meetings(self) -> List[MeetingCandidate]:
        ...

    def fetch_users(self) -> List[UserCandidate]:
        ...


class PaginatedSource:
    """Reads whole tables page by page until a short or empty page."""

    MEETINGS_TABLE = 'zoom_meetings'
    USERS_TABLE = 'zoom_users'

    def __init__(self, fetch_page: PageFetcher, page_size: int = 1000):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.fetch_page = fetch_page
        self.page_size = page_size

    def _fetch_all(self, table: str, record_type: Type[T]) -> List[T]:
        """
        Read every row of a table.

        Args:
            table: Table name handed to the page fetcher
            record_type: Record class built from each row

        Returns:
            List[T]: All rows, in page order

        Raises:
            DataFetchError: If a page or a row cannot be read
        """
        records: List[T] = []
        page = 0
        while True:
            offset = page * self.page_size
            try:
                rows = self.fetch_page(table, offset, self.page_size)
            except Exception as e:
                raise DataFetchError(f"Failed to read {table} at offset {offset}: {e}") from e

            if not rows:
                break
            try:
                records.extend(record_type.from_record(row) for row in rows)
            except (KeyError, TypeError, ValueError) as e:
                raise DataFetchError(f"Malformed row in {table}: {e}") from e

            if len(rows) < self.page_size:
                break
            page += 1

        logger.info(f"Fetched {len(records)} rows from {table} in {page + 1} pages")
        return records

    def fetch_meetings(self) -> List[MeetingCandidate]:
        return self._fetch_all(self.MEETINGS_TABLE, MeetingCandidate)

    def fetch_users(self) -> List[UserCandidate]:
        return self._fetch_all(self.USERS_TABLE, UserCandidate)


class StaticSource:
    """In-memory snapshot, for callers that already hold both datasets."""

    def __init__(self, meetings: List[MeetingCandidate], users: List[UserCandidate]):
        self.meetings = list(meetings)
        self.users = list(users)

    def fetch_meetings(self) -> List[MeetingCandidate]:
        return list(self.meetings)

    def fetch_users(self) -> List[UserCandidate]:
        return list(self.users)


def records_by_id(users: List[UserCandidate]) -> Dict[str, UserCandidate]:
    """Host map keyed by user id; the first occurrence wins."""
    hosts: Dict[str, UserCandidate] = {}
    for user in users:
        hosts.setdefault(user.id, user)
    return hosts
