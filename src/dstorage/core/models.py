"""
Base data models for registry records and access grants
"""

from datetime import datetime, timezone
from enum import IntEnum

from .exceptions import ValidationError


class AccessType(IntEnum):
    # Wire values used by the registry
    PUBLIC = 0
    PRIVATE = 1
    RESTRICTED = 2


def parse_access_type(value):
    """
        Parse an access type from an enum member, wire int or name.

        This is the only place loose input is turned into an AccessType;
        anything unrecognized raises ValidationError.
    """
    if isinstance(value, AccessType):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Unrecognized access type: {value!r}")
    if isinstance(value, int):
        try:
            return AccessType(value)
        except ValueError:
            raise ValidationError(f"Unrecognized access type: {value!r}") from None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_access_type(int(text))
        try:
            return AccessType[text.upper()]
        except KeyError:
            raise ValidationError(f"Unrecognized access type: {value!r}") from None
    raise ValidationError(f"Unrecognized access type: {value!r}")


class FileRecord:
    """
        The registry's metadata entry for one uploaded file
    """

    __slots__ = (
        'file_id',
        'content_hash',
        'file_size',
        'file_name',
        'file_description',
        'file_type',
        'uploader',
        'upload_time',
        'access_type',
        'is_encrypted',
    )

    def __init__(self, file_id, content_hash, file_size, file_name, file_description="", file_type="application/octet-stream", uploader="", upload_time=None, access_type=AccessType.PUBLIC, is_encrypted=False):
        """
            Initialize a FileRecord
        """
        values = {
            'file_id': int(file_id),
            'content_hash': content_hash,
            'file_size': int(file_size),
            'file_name': file_name,
            'file_description': file_description,
            'file_type': file_type,
            'uploader': uploader,
            'upload_time': int(upload_time) if upload_time is not None else int(datetime.now(timezone.utc).timestamp()),
            'access_type': parse_access_type(access_type),
            'is_encrypted': bool(is_encrypted),
        }
        for name, value in values.items():
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        # registered records are append-only
        raise AttributeError(f"FileRecord is immutable; cannot set {name!r}")

    def __delattr__(self, name):
        raise AttributeError(f"FileRecord is immutable; cannot delete {name!r}")

    def to_dict(self):
        """
            Convert record to dict
        """
        return {
            'file_id': self.file_id,
            'content_hash': self.content_hash,
            'file_size': self.file_size,
            'file_name': self.file_name,
            'file_description': self.file_description,
            'file_type': self.file_type,
            'uploader': self.uploader,
            'upload_time': self.upload_time,
            'access_type': int(self.access_type),
            'is_encrypted': self.is_encrypted,
        }

    def __repr__(self):
        return f"FileRecord(file_id={self.file_id!r}, file_name={self.file_name!r}, access_type={self.access_type.name})"

    def __eq__(self, other):
        if not isinstance(other, FileRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.file_id, self.content_hash))


def create_record_from_dict(data):
    """
        Create FileRecord from dictionary (or sqlite row dict)
    """
    return FileRecord(
        file_id=data['file_id'],
        content_hash=data['content_hash'],
        file_size=data['file_size'],
        file_name=data['file_name'],
        file_description=data.get('file_description') or "",
        file_type=data.get('file_type') or "application/octet-stream",
        uploader=data.get('uploader', ""),
        upload_time=data.get('upload_time'),
        access_type=data.get('access_type', AccessType.PUBLIC),
        is_encrypted=data.get('is_encrypted', False),
    )


class AccessGrant:
    """
        Grant of fetch rights on one file to one principal
    """

    __slots__ = ('file_id', 'grantee', 'active')

    def __init__(self, file_id, grantee, active=True):
        self.file_id = int(file_id)
        self.grantee = grantee
        self.active = bool(active)

    def to_dict(self):
        return {
            'file_id': self.file_id,
            'grantee': self.grantee,
            'active': self.active,
        }

    def __repr__(self):
        return f"AccessGrant(file_id={self.file_id!r}, grantee={self.grantee!r}, active={self.active!r})"


class AccessLogEntry:
    """
        One audit row appended by record_access
    """

    __slots__ = ('file_id', 'accessor', 'accessed_at')

    def __init__(self, file_id, accessor, accessed_at):
        self.file_id = int(file_id)
        self.accessor = accessor
        self.accessed_at = int(accessed_at)

    def to_dict(self):
        return {
            'file_id': self.file_id,
            'accessor': self.accessor,
            'accessed_at': self.accessed_at,
        }


class FileListing:
    """
        File ids visible to a principal, split by how they are visible
    """

    __slots__ = ('owned', 'shared', 'public')

    def __init__(self, owned=None, shared=None, public=None):
        self.owned = set(owned or ())
        self.shared = set(shared or ())
        self.public = set(public or ())

    def all_ids(self):
        """
            Every visible id, sorted
        """
        return sorted(self.owned | self.shared | self.public)
