"""
Error kinds raised by the pipeline.

Parse-time errors (ParseError subclasses) are terminal for a parse attempt:
the bill moves to the error status with the message stored verbatim.
Approval-time errors are recoverable validation failures.
"""


class BarnLedgerError(Exception):
    """Base exception for all barn-ledger errors."""

    pass


class ParseError(BarnLedgerError):
    """A bill parse attempt failed and must not persist partial data."""

    pass


class MissingApiCredential(ParseError):
    """No API key configured for the document-understanding service."""

    pass


class DocumentFetchFailure(ParseError):
    """The stored invoice document could not be read."""

    pass


class ExtractionServiceError(ParseError):
    """The document-understanding call failed (timeout, HTTP or transport error)."""

    pass


class ModelResponseMalformed(ParseError):
    """The extraction response had no usable text or JSON object."""

    pass


class MissingExchangeRate(ParseError):
    """Non-USD invoice with neither a declared rate nor a table entry."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"No exchange rate available for currency {currency}")


class MissingOriginalTotal(ParseError):
    """Non-USD invoice without an original-currency total."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Missing original total for {currency} invoice")


class MissingExpectedField(ParseError):
    """A provider-declared required field is absent after normalization."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Missing expected parsed fields: {', '.join(fields)}")


class UnresolvedEntities(BarnLedgerError):
    """Approval blocked because horse names are still unmatched."""

    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(
            f"Cannot approve: {len(names)} unmatched horse name(s): {', '.join(names)}"
        )


class AlreadyApproved(BarnLedgerError):
    """The bill was approved before; approval and splitting happen once."""

    pass


class InvalidAlias(BarnLedgerError):
    """Alias text normalizes to fewer than two characters."""

    pass


class EntityNotFound(BarnLedgerError):
    """Referenced horse or person does not exist."""

    pass


class BillNotFound(BarnLedgerError):
    """Referenced bill does not exist."""

    pass


class InvalidAssignment(BarnLedgerError):
    """Whole-invoice person assignment on a bill that does not allow it."""

    pass
