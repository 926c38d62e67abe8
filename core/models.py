from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TriState(str, Enum):
    """Outcome of a check that may not have been performed."""

    yes = "Y"
    no = "N"
    unknown = "U"


class AuthMode(str, Enum):
    default = "default"
    apa = "apa"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AuthMode":
        """Case-insensitive lookup. Unknown or missing values fall back to default."""
        if value and value.strip().lower() == cls.apa.value:
            return cls.apa
        return cls.default


class OutputMode(str, Enum):
    json = "json"
    jsonp = "jsonp"
    xml = "xml"


# Envelope values for the "status" field of JSON responses.
STATUS_OK = "OK"
STATUS_ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Domain data
# ---------------------------------------------------------------------------


@dataclass
class BlockReason:
    note: str
    code: str = "none"  # the ILS reports block text only, no code


@dataclass
class ExpiryInfo:
    timestamp: int
    formatted: str


@dataclass
class Patron:
    """Identity returned by a successful ILS login."""

    username: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None


@dataclass
class AuthRequest:
    username: Optional[str]
    password: Optional[str]
    mode: AuthMode = AuthMode.default
    method: str = "POST"


@dataclass
class AccountStatus:
    exists: TriState = TriState.unknown
    valid: TriState = TriState.unknown
    blocked: TriState = TriState.unknown
    expired: TriState = TriState.unknown
    block_reasons: list[BlockReason] = field(default_factory=list)
    expiry: Optional[ExpiryInfo] = None
    group_code: Optional[str] = None
    group_description: Optional[str] = None
    has_error: bool = False
    error_message: Optional[str] = None


@dataclass
class AuthOutcome:
    status: AccountStatus
    http_status: int
    ok: bool

    @property
    def envelope_status(self) -> str:
        return STATUS_OK if self.ok else STATUS_ERROR
