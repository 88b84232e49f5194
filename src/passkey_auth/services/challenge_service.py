"""Challenge lifecycle: issuance, matching, consumption and expiry sweeps.

Challenges are single-use. A matched challenge is consumed by an atomic
delete; of two requests racing for the same challenge only the one whose
delete removed the row may continue.
"""

import asyncio
from typing import TYPE_CHECKING, List, Optional

from passkey_auth.models import Challenge, ChallengeType
from passkey_auth.storage.base import AuthStorage
from passkey_auth.utils import encoding
from passkey_auth.utils.exceptions import ChallengeMismatchError, NoActiveChallengeError
from passkey_auth.utils.logging import get_logger
from passkey_auth.utils.timeutils import expires_in, utcnow

if TYPE_CHECKING:
    from passkey_auth.storage.provider import StorageProvider

logger = get_logger(__name__)


class ChallengeService:
    """Issues and resolves ceremony challenges for one unit of work."""

    def __init__(self, storage: AuthStorage, timeout_seconds: float = 300):
        """Initialize challenge service.

        Args:
            storage: Request-scoped storage
            timeout_seconds: Server-side lifetime of a challenge
        """
        self.storage = storage
        self.timeout_seconds = timeout_seconds

    async def issue(
        self,
        user_id: Optional[int],
        challenge_type: ChallengeType,
        challenge: str,
        qr_code: Optional[str] = None,
    ) -> Challenge:
        """Persist a new challenge for a ceremony attempt."""
        record = await self.storage.create_challenge(
            {
                "user_id": user_id,
                "challenge": challenge,
                "type": ChallengeType(challenge_type).value,
                "qr_code": qr_code,
                "expires_at": expires_in(self.timeout_seconds),
            }
        )
        logger.debug(
            "challenge_issued",
            challenge_id=record.id,
            user_id=user_id,
            challenge_type=record.type,
        )
        return record

    async def active_challenges(
        self, user_id: int, challenge_type: ChallengeType
    ) -> List[Challenge]:
        """List a user's unexpired challenges of one type, newest first."""
        now = utcnow()
        challenge_type = ChallengeType(challenge_type)
        challenges = await self.storage.list_challenges_by_user(user_id)
        active = [
            c
            for c in challenges
            if c.type == challenge_type.value and c.expires_at > now
        ]
        return sorted(active, key=lambda c: (c.created_at, c.id), reverse=True)

    async def resolve(
        self,
        user_id: int,
        challenge_type: ChallengeType,
        client_challenge: str,
        expected_challenge: Optional[str] = None,
    ) -> Challenge:
        """Find the active challenge a signed client response answers.

        The newest active challenge is the default candidate. A client may
        name the challenge it was given (``expected_challenge``) to survive
        page reloads and parallel tabs; when that value matches another
        active challenge, that one becomes the candidate. The candidate must
        then equal the challenge embedded in the client data, either exactly
        or after both sides are normalized to unpadded base64url.

        Raises:
            NoActiveChallengeError: If the user has no unexpired challenge of this type
            ChallengeMismatchError: If the candidate does not match the client data
        """
        active = await self.active_challenges(user_id, challenge_type)
        if not active:
            raise NoActiveChallengeError()

        candidate = active[0]

        if expected_challenge and expected_challenge != candidate.challenge:
            match = next((c for c in active if c.challenge == expected_challenge), None)
            if match is not None:
                candidate = match
            else:
                logger.warning(
                    "expected_challenge_not_active",
                    user_id=user_id,
                    challenge_type=ChallengeType(challenge_type).value,
                )

        if client_challenge == candidate.challenge:
            return candidate

        if encoding.normalize(client_challenge) == encoding.normalize(candidate.challenge):
            logger.info("challenge_matched_after_normalization", challenge_id=candidate.id)
            return candidate

        logger.warning(
            "challenge_mismatch",
            user_id=user_id,
            challenge_id=candidate.id,
            challenge_type=ChallengeType(challenge_type).value,
        )
        raise ChallengeMismatchError(
            client_challenge, candidate.challenge, expected_challenge
        )

    async def consume(self, challenge: Challenge) -> None:
        """Delete a matched challenge.

        Raises:
            NoActiveChallengeError: If another request consumed it first
        """
        if not await self.storage.delete_challenge(challenge.id):
            logger.warning("challenge_already_consumed", challenge_id=challenge.id)
            raise NoActiveChallengeError()

    async def sweep_expired(self) -> int:
        """Delete all expired challenges."""
        return await self.storage.delete_expired_challenges()


class ChallengeSweeper:
    """Periodically removes expired challenges.

    Overlapping sweeps are skipped. A failed sweep is logged and retried on
    the next tick.
    """

    def __init__(self, provider: "StorageProvider", interval_seconds: float = 120.0):
        """Initialize challenge sweeper.

        Args:
            provider: Source of request-scoped storage
            interval_seconds: Delay between sweeps
        """
        self.provider = provider
        self.interval_seconds = interval_seconds
        self.is_running = False
        self._sweep_in_progress = False
        self._task: Optional["asyncio.Task[None]"] = None

    async def run_once(self) -> Optional[int]:
        """Run one sweep.

        Returns:
            Number of deleted challenges, or None if the sweep was skipped or failed
        """
        if self._sweep_in_progress:
            logger.debug("challenge_sweep_skipped")
            return None

        self._sweep_in_progress = True
        try:
            async with self.provider.session() as storage:
                deleted = await ChallengeService(storage).sweep_expired()
            if deleted:
                logger.info("expired_challenges_deleted", count=deleted)
            return deleted
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("challenge_sweep_failed", error=str(e))
            return None
        finally:
            self._sweep_in_progress = False

    def start(self) -> None:
        """Start sweeping in the background."""
        if self.is_running:
            logger.warning("challenge_sweeper_already_running")
            return

        self.is_running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("challenge_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop."""
        self.is_running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("challenge_sweeper_stopped")

    async def _sweep_loop(self) -> None:
        """Run the main sweep loop."""
        while self.is_running:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
