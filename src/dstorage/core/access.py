"""
Share, revoke and check operations against the Access Directory.

Ownership is never checked here; the directory is the authority and rejects
non-owners with UnauthorizedError. The only local check is address syntax,
which runs before any directory call.
"""

import logging
import re
from typing import Iterable, List

from .exceptions import ConflictError, ValidationError
from .interfaces import AccessDirectory
from .models import FileListing

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address) -> bool:
    return isinstance(address, str) and ADDRESS_PATTERN.match(address) is not None


def validate_address(address) -> str:
    """Return the address stripped, or raise ValidationError."""
    candidate = address.strip() if isinstance(address, str) else address
    if not is_valid_address(candidate):
        raise ValidationError(f"Invalid address: {address!r}")
    return candidate


def normalize_recipients(recipients: Iterable) -> List[str]:
    """
    Strip, drop blanks, validate and de-duplicate a recipient list.

    Order of first appearance is kept. Any malformed entry fails the whole
    list.
    """
    seen = set()
    result = []
    invalid = []
    for raw in recipients or ():
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        try:
            address = validate_address(raw)
        except ValidationError:
            invalid.append(raw)
            continue
        key = address.lower()
        if key not in seen:
            seen.add(key)
            result.append(address)
    if invalid:
        raise ValidationError(f"Invalid recipient address(es): {', '.join(map(repr, invalid))}")
    return result


class AccessControlManager:
    """Access operations for one directory handle."""

    def __init__(self, directory: AccessDirectory, conflict_retries: int = 1):
        self.directory = directory
        self.conflict_retries = max(0, int(conflict_retries))

    async def _write(self, name, *args):
        # retry only conflicts the directory marks as transient
        attempt = 0
        while True:
            try:
                return await getattr(self.directory, name)(*args)
            except ConflictError as e:
                if not e.retryable or attempt >= self.conflict_retries:
                    raise
                attempt += 1
                logger.warning("Registry conflict on %s, retrying (%d/%d): %s", name, attempt, self.conflict_retries, e)

    async def check_access(self, file_id, principal) -> bool:
        """Ask the directory; results are never cached."""
        allowed = await self.directory.has_access(file_id, principal)
        logger.debug("Access check file=%s principal=%s -> %s", file_id, principal, allowed)
        return bool(allowed)

    async def share_file(self, file_id, recipient) -> None:
        address = validate_address(recipient)
        await self._write("grant_access", file_id, address)
        logger.info("Shared file %s with %s", file_id, address)

    async def revoke_access(self, file_id, recipient) -> None:
        """Deactivate a grant. Revoking a missing or inactive grant succeeds."""
        address = validate_address(recipient)
        await self._write("revoke_access", file_id, address)
        logger.info("Revoked %s on file %s", address, file_id)

    async def add_recipients(self, file_id, recipients) -> List[str]:
        """
        Grant every recipient; returns the addresses granted.

        All addresses are validated before the first grant is issued.
        """
        addresses = normalize_recipients(recipients)
        if not addresses:
            raise ValidationError("No valid recipient addresses given")
        for address in addresses:
            await self._write("grant_access", file_id, address)
        logger.info("Granted %d recipient(s) on file %s", len(addresses), file_id)
        return addresses

    async def list_files(self, principal) -> FileListing:
        return FileListing(
            owned=await self.directory.list_owned(principal),
            shared=await self.directory.list_shared(principal),
            public=await self.directory.list_public(),
        )

    async def access_log(self, file_id):
        return await self.directory.get_access_log(file_id)

    async def list_grants(self, file_id):
        return await self.directory.list_grants(file_id)
