"""
Setup wizard: region -> queue -> confirmation.

Progress lives only in memory (WizardSessionStore). Nothing is written to
the database until the user confirms, so a half-finished setup leaves no
user record behind, and every other feature can use "record exists" as
the "user is set up" check.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection, Dict, Iterator, Optional, Protocol, Tuple, Union


class WizardMode(str, Enum):
    NEW = "new"     # first setup, creates the record
    EDIT = "edit"   # region/queue change, updates the existing record


class WizardStep(str, Enum):
    AWAITING_REGION = "awaiting_region"
    AWAITING_QUEUE = "awaiting_queue"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class WizardResult(str, Enum):
    IGNORED = "ignored"
    ADVANCED = "advanced"
    COMMITTED = "committed"


@dataclass
class WizardSession:
    user_id: str
    mode: WizardMode = WizardMode.NEW
    region: Optional[str] = None
    queue: Optional[str] = None
    step: WizardStep = WizardStep.AWAITING_REGION
    # set while the confirmed answers are being saved; every event is ignored meanwhile
    committing: bool = False


class WizardSessionStore:
    """In-memory sessions keyed by user identifier (string form)."""

    def __init__(self) -> None:
        self._sessions: Dict[str, WizardSession] = {}

    def get(self, user_id: Any) -> Optional[WizardSession]:
        return self._sessions.get(str(user_id))

    def put(self, session: WizardSession) -> None:
        self._sessions[session.user_id] = session

    def discard(self, user_id: Any) -> Optional[WizardSession]:
        return self._sessions.pop(str(user_id), None)

    def discard_if(self, session: WizardSession) -> bool:
        """Removes session only if it is still the user's current one."""
        if self._sessions.get(session.user_id) is not session:
            return False
        del self._sessions[session.user_id]
        return True

    def __contains__(self, user_id: Any) -> bool:
        return str(user_id) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[WizardSession]:
        return iter(list(self._sessions.values()))


# --- Events (decoded once from callback data) ---
@dataclass(frozen=True)
class RegionSelected:
    region: str


@dataclass(frozen=True)
class QueueSelected:
    queue: str


@dataclass(frozen=True)
class BackToRegion:
    pass


@dataclass(frozen=True)
class Confirmed:
    pass


WizardEvent = Union[RegionSelected, QueueSelected, BackToRegion, Confirmed]

REGION_PREFIX = "region_"
QUEUE_PREFIX = "queue_"
CONFIRM_DATA = "confirm_setup"
BACK_TO_REGION_DATA = "back_to_region"


def decode_wizard_callback(data: Optional[str]) -> Optional[WizardEvent]:
    """
    Callback data -> wizard event, None if the data is not a wizard callback.

    region_<code>   -> RegionSelected
    queue_<queue>   -> QueueSelected
    back_to_region  -> BackToRegion
    confirm_setup   -> Confirmed
    """
    if not data:
        return None
    if data == CONFIRM_DATA:
        return Confirmed()
    if data == BACK_TO_REGION_DATA:
        return BackToRegion()
    if data.startswith(REGION_PREFIX):
        value = data[len(REGION_PREFIX):]
        return RegionSelected(value) if value else None
    if data.startswith(QUEUE_PREFIX):
        value = data[len(QUEUE_PREFIX):]
        return QueueSelected(value) if value else None
    return None


def is_wizard_callback(data: Optional[str]) -> bool:
    return decode_wizard_callback(data) is not None


class UserRepository(Protocol):
    async def create_user(self, telegram_id: str, username: Optional[str], region: str, queue: str) -> Optional[Dict[str, Any]]: ...

    async def update_user_region_queue(self, telegram_id: str, region: str, queue: str) -> Optional[Dict[str, Any]]: ...

    async def get_user_by_telegram_id(self, telegram_id: str) -> Optional[Dict[str, Any]]: ...


class WizardCommitError(Exception):
    """Saving the confirmed answers failed; the session is kept for a retry."""

    def __init__(self, session: WizardSession, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to save setup for user {session.user_id}")
        self.session = session
        self.cause = cause


class OnboardingWizard:
    """
    Drives one user's session through the steps.

    regions/queues restrict accepted values; None accepts anything.
    """

    def __init__(
        self,
        sessions: WizardSessionStore,
        users: UserRepository,
        regions: Optional[Collection[str]] = None,
        queues: Optional[Collection[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sessions = sessions
        self.users = users
        self.regions = set(regions) if regions is not None else None
        self.queues = set(queues) if queues is not None else None
        self.logger = logger or logging.getLogger(__name__)

    def start(
        self,
        user_id: Any,
        mode: WizardMode = WizardMode.NEW,
        region: Optional[str] = None,
        queue: Optional[str] = None,
    ) -> WizardSession:
        """Begin (or restart) setup; any previous session of this user is dropped."""
        session = WizardSession(user_id=str(user_id), mode=mode, region=region, queue=queue)
        if self.sessions.discard(user_id) is not None:
            self.logger.info("Wizard restarted, previous session discarded")
        self.sessions.put(session)
        self.logger.info(f"Wizard started (mode={mode.value})")
        return session

    async def handle(
        self,
        user_id: Any,
        username: Optional[str],
        event: WizardEvent,
    ) -> Tuple[WizardResult, Optional[WizardSession]]:
        """
        Apply event to the user's session.

        Returns (IGNORED, session-or-None) when there is no session or the event
        does not fit the current step (or the session is being saved),
        (ADVANCED, session) after a step change,
        (COMMITTED, session) once the record is saved and the session removed.
        Raises WizardCommitError when saving fails.
        """
        session = self.sessions.get(user_id)
        if session is None:
            self.logger.debug(f"Wizard event {event!r} without session, ignored")
            return WizardResult.IGNORED, None

        if session.committing:
            return self._ignore(session, event)

        if isinstance(event, RegionSelected):
            if session.step != WizardStep.AWAITING_REGION or not self._valid_region(event.region):
                return self._ignore(session, event)
            session.region = event.region
            session.step = WizardStep.AWAITING_QUEUE
            return WizardResult.ADVANCED, session

        if isinstance(event, QueueSelected):
            if session.step != WizardStep.AWAITING_QUEUE or not self._valid_queue(event.queue):
                return self._ignore(session, event)
            session.queue = event.queue
            session.step = WizardStep.AWAITING_CONFIRMATION
            return WizardResult.ADVANCED, session

        if isinstance(event, BackToRegion):
            if session.step == WizardStep.AWAITING_REGION:
                return self._ignore(session, event)
            session.queue = None
            session.step = WizardStep.AWAITING_REGION
            return WizardResult.ADVANCED, session

        if isinstance(event, Confirmed):
            if session.step != WizardStep.AWAITING_CONFIRMATION:
                return self._ignore(session, event)
            session.committing = True
            try:
                await self._commit(session, username)
            finally:
                session.committing = False
            # start() may have replaced the session while the save was awaited
            self.sessions.discard_if(session)
            return WizardResult.COMMITTED, session

        return self._ignore(session, event)

    async def _commit(self, session: WizardSession, username: Optional[str]) -> None:
        try:
            if session.mode == WizardMode.EDIT:
                record = await self.users.update_user_region_queue(session.user_id, session.region, session.queue)
                if record is None and await self.users.get_user_by_telegram_id(session.user_id) is None:
                    # Record was deleted while the edit was in progress
                    self.logger.warning("Edit confirmed for missing user record, creating it")
                    record = await self.users.create_user(session.user_id, username, session.region, session.queue)
            else:
                record = await self.users.create_user(session.user_id, username, session.region, session.queue)
        except Exception as e:
            self.logger.error(f"Wizard commit failed: {e}", exc_info=True)
            raise WizardCommitError(session, e) from e

        if record is None:
            self.logger.error("Wizard commit failed: repository returned no record")
            raise WizardCommitError(session)

        self.logger.info(f"Wizard committed (mode={session.mode.value}, region={session.region}, queue={session.queue})")

    def _ignore(self, session: WizardSession, event: WizardEvent) -> Tuple[WizardResult, WizardSession]:
        self.logger.debug(f"Wizard event {event!r} ignored at step {session.step.value}")
        return WizardResult.IGNORED, session

    def _valid_region(self, region: str) -> bool:
        return self.regions is None or region in self.regions

    def _valid_queue(self, queue: str) -> bool:
        return self.queues is None or queue in self.queues
