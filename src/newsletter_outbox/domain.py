"""Validated value objects for the publish pipeline.

This module wraps the two caller-controlled strings that the pipeline must
trust before acting on them:

- ``IdempotencyKey``: the dedup token supplied with a publish request.
- ``SubscriberEmail``: a recipient address read back from the outbox.

Both are immutable and are only obtained through ``parse()``, which raises
``InputValidationError`` for bad input.

Examples:
    Parsing an idempotency key::

        from newsletter_outbox.domain import IdempotencyKey

        key = IdempotencyKey.parse("3f1c9f2e-8a4b-4d7e-9c55-1b2a6f0d4e21")
        str(key)  # the raw value, unchanged

    Parsing a recipient address::

        from newsletter_outbox.domain import SubscriberEmail

        email = SubscriberEmail.parse("ursula@example.com")
"""

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ValidationError, field_validator

from newsletter_outbox.exceptions import InputValidationError

# Keys must be strictly shorter than this many bytes
MAX_KEY_LENGTH = 49


class IdempotencyKey(BaseModel):
    """Caller-supplied token scoping request deduplication per actor.

    A key is valid iff its UTF-8 encoding is between 1 and 48 bytes long.
    No normalization is applied: two keys are the same only if their raw
    strings are equal.

    Attributes:
        value: The raw key string.

    Examples:
        >>> IdempotencyKey.parse("abc123").value
        'abc123'
        >>> IdempotencyKey.parse("")
        Traceback (most recent call last):
        ...
        newsletter_outbox.exceptions.InputValidationError: The idempotency key cannot be empty
    """

    value: str

    model_config = {"frozen": True}

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: str) -> str:
        """Validate the key length.

        Args:
            v: The raw key.

        Returns:
            The key, unchanged.

        Raises:
            ValueError: If the key is empty or too long.
        """
        if not v:
            raise ValueError("The idempotency key cannot be empty")
        if len(v.encode("utf-8")) >= MAX_KEY_LENGTH:
            raise ValueError(
                f"The idempotency key must be shorter than {MAX_KEY_LENGTH} bytes"
            )
        return v

    @classmethod
    def parse(cls, raw: str) -> "IdempotencyKey":
        """Validate a raw string and wrap it.

        Args:
            raw: The key as received from the caller.

        Returns:
            The validated key.

        Raises:
            InputValidationError: If the key is empty or 49 bytes or longer.
        """
        try:
            return cls(value=raw)
        except ValidationError as e:
            message = e.errors()[0]["msg"].removeprefix("Value error, ")
            raise InputValidationError(
                message=message,
                field="idempotency_key",
                value=raw,
                cause=e,
            ) from e

    def __str__(self) -> str:
        return self.value


class SubscriberEmail(BaseModel):
    """A syntactically valid recipient address.

    Validation is syntax-only (no DNS lookups). The stored string is kept
    as-is so it can still be matched against the delivery queue row it came
    from.
    """

    value: str

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, raw: str) -> "SubscriberEmail":
        """Validate a raw address and wrap it.

        Args:
            raw: The address as stored in the outbox.

        Returns:
            The validated address.

        Raises:
            InputValidationError: If the address is not a valid email.
        """
        try:
            validate_email(raw, check_deliverability=False)
        except EmailNotValidError as e:
            raise InputValidationError(
                message=f"Invalid email address: {e}",
                field="subscriber_email",
                value=raw,
                cause=e,
            ) from e
        return cls(value=raw)

    def __str__(self) -> str:
        return self.value
