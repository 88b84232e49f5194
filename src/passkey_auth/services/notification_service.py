"""Out-of-band delivery of one-time MFA codes."""

from passkey_auth.utils.logging import get_logger, mask

logger = get_logger(__name__)


class CodeSender:
    """Delivers email and SMS verification codes.

    The default implementation records a delivery event with the destination
    masked and never logs the code itself. Deployments plug in a real
    mail/SMS gateway by overriding :meth:`send`.
    """

    async def send(self, channel: str, destination: str, code: str) -> None:
        """Deliver a one-time code.

        Args:
            channel: ``email`` or ``sms``
            destination: Email address or phone number
            code: The one-time code
        """
        logger.info(
            "verification_code_dispatched",
            channel=channel,
            destination=mask(destination),
            code_length=len(code),
        )
