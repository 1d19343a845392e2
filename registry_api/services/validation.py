"""Request validation for the mint and wallet endpoints.

Validation is pure: no collaborator is called and nothing is written, so
validating the same payload twice yields the same result.  Pydantic does
the parsing; ``_field_errors`` turns its error list into the response's
``{wire_field: [messages]}`` map with one stable message per field and
failure kind.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
)
from pydantic_core import PydanticCustomError
from solders.pubkey import Pubkey

from registry_api.core.errors import ValidationFailed

logger = logging.getLogger(__name__)

MAX_MINT_AMOUNT = 1_000_000
MAX_DECIMALS = 9

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")
_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)

# Program and sysvar addresses that can never own carbon credits.
SYSTEM_ACCOUNTS = frozenset(
    {
        "11111111111111111111111111111111",
        "11111111111111111111111111111112",
        "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
    }
)

WalletSource = Literal["phantom", "solflare", "torus", "ledger", "other"]


def is_valid_public_key(value: Any) -> bool:
    """True if ``value`` decodes to a 32-byte ledger public key."""
    if not isinstance(value, str) or not value:
        return False
    try:
        Pubkey.from_string(value)
    except ValueError:
        return False
    return True


def address_fingerprint(address: str) -> str:
    """Short, non-reversible tag for an address in log lines."""
    return hashlib.sha256(address.encode()).hexdigest()[:8]


# ---------------------------------------------------------------------------
# Mint request
# ---------------------------------------------------------------------------


class MintRequest(BaseModel):
    """A validated mint call.  Immutable once constructed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    project_id: UUID = Field(alias="projectId")
    recipient_wallet: str = Field(alias="recipientWallet")
    amount: Annotated[StrictInt, Field(ge=1, le=MAX_MINT_AMOUNT)]
    decimals: Annotated[StrictInt, Field(ge=0, le=MAX_DECIMALS)] = 0

    @field_validator("project_id", mode="before")
    @classmethod
    def _uuid_text_only(cls, value: Any) -> Any:
        if isinstance(value, UUID):
            return value
        # Only the hyphenated 8-4-4-4-12 form; no braces, urn: prefix or bare hex.
        if isinstance(value, str) and _UUID_RE.fullmatch(value.strip()):
            return value.strip()
        raise PydanticCustomError("uuid_type", "Project ID must be a valid UUID")

    @field_validator("recipient_wallet")
    @classmethod
    def _recipient_is_public_key(cls, value: str) -> str:
        if not is_valid_public_key(value):
            raise PydanticCustomError("public_key", "Invalid Solana wallet address")
        return value

    @field_validator("decimals", mode="before")
    @classmethod
    def _decimals_default(cls, value: Any) -> Any:
        return 0 if value is None else value


_MINT_MESSAGES = {
    "projectId": ("Project ID is required", "Project ID must be a valid UUID"),
    "recipientWallet": (
        "Recipient wallet is required",
        "Invalid Solana wallet address",
    ),
    "amount": ("Amount is required", "Amount must be between 1 and 1,000,000"),
    "decimals": (None, "Decimals must be between 0 and 9"),
}


# ---------------------------------------------------------------------------
# Wallet save request
# ---------------------------------------------------------------------------


class WalletMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    source: WalletSource | None = None


class WalletSaveRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    wallet_address: str = Field(alias="walletAddress")
    metadata: WalletMetadata | None = None

    @field_validator("wallet_address", mode="before")
    @classmethod
    def _trim(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("wallet_address")
    @classmethod
    def _wallet_address_rules(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("missing", "Wallet address is required")
        if not 32 <= len(value) <= 44:
            raise PydanticCustomError(
                "length", "Wallet address must be between 32-44 characters"
            )
        if not _BASE58_RE.match(value):
            raise PydanticCustomError(
                "charset", "Wallet address contains invalid characters"
            )
        if not is_valid_public_key(value):
            raise PydanticCustomError(
                "public_key", "Invalid Solana wallet address: not a valid public key"
            )
        if value in SYSTEM_ACCOUNTS:
            raise PydanticCustomError(
                "system_account",
                "Invalid Solana wallet address: Cannot use system program addresses",
            )
        return value


_WALLET_MESSAGES = {
    "walletAddress": ("Wallet address is required", "Invalid Solana wallet address"),
    "metadata": (None, "Metadata must be an object"),
    "metadata.source": (None, "Invalid wallet source"),
}


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _field_errors(
    exc: ValidationError, messages: dict[str, tuple[str | None, str]]
) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "body"
        required_msg, invalid_msg = messages.get(field, (None, err["msg"]))
        if err["type"] == "missing" or err.get("input") in (None, ""):
            message = required_msg or invalid_msg
        elif err["type"] in (
            "uuid_type",
            "public_key",
            "length",
            "charset",
            "system_account",
        ):
            message = err["msg"]
        else:
            message = invalid_msg
        if field == "body":
            message = "Request body must be a JSON object"
        bucket = errors.setdefault(field, [])
        if message not in bucket:
            bucket.append(message)
    return errors


def validate_mint_request(payload: Any) -> MintRequest:
    """Parse and check a mint payload; raises ``ValidationFailed``."""
    try:
        return MintRequest.model_validate(payload)
    except ValidationError as exc:
        field_errors = _field_errors(exc, _MINT_MESSAGES)
        logger.warning(
            "Mint request rejected fields=%s",
            sorted(field_errors),
            extra={"event": "validation.failed"},
        )
        raise ValidationFailed(field_errors) from None


def validate_wallet_request(
    payload: Any, *, content_type: str | None
) -> WalletSaveRequest:
    """Parse and check a wallet-save payload; raises ``ValidationFailed``.

    The content type is checked alongside the body so both kinds of
    problem come back in one response.
    """
    field_errors: dict[str, list[str]] = {}
    if (content_type or "").split(";")[0].strip().lower() != "application/json":
        field_errors["content-type"] = ["Content-Type must be application/json"]

    request: WalletSaveRequest | None = None
    try:
        request = WalletSaveRequest.model_validate(payload)
    except ValidationError as exc:
        field_errors.update(_field_errors(exc, _WALLET_MESSAGES))

    if field_errors or request is None:
        raw = payload.get("walletAddress") if isinstance(payload, dict) else None
        logger.warning(
            "Wallet validation failed fields=%s address_length=%s",
            sorted(field_errors),
            len(raw) if isinstance(raw, str) else None,
            extra={"event": "validation.failed"},
        )
        raise ValidationFailed(field_errors)

    logger.info(
        "Wallet address validated hash=%s",
        address_fingerprint(request.wallet_address),
        extra={"event": "validation.wallet_ok"},
    )
    return request
