from __future__ import annotations


class IpTaxCalcError(Exception):
    """Base class for domain errors surfaced to API callers."""

    status_code = 400


class InvalidRegimeError(IpTaxCalcError, ValueError):
    def __init__(self, regime: object):
        self.regime = regime
        super().__init__(f"Unknown tax regime: {regime!r}")


class StatementFormatError(IpTaxCalcError, ValueError):
    """The uploaded file cannot be read as a bank statement at all."""


class TaxTableError(IpTaxCalcError):
    """Tax table configuration is missing or malformed."""

    status_code = 500


class RulesConfigError(IpTaxCalcError):
    """Transfer rule configuration is missing or malformed."""

    status_code = 500
