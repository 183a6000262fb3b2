"""
Identifier formats for generated codes (``erp_kernel.domain.codes``).

Pure formatting and parsing for the persisted identifier shapes:

    client code              SC001, SC002, ...
    sub-client code          <parentCode>001, <parentCode>002, ...
    invoice number           <org>/<FY>/001
    opening-balance invoice  OPENING_BAL_<subClientCode>_<ccCode>

Counters are allocated elsewhere; this module only renders and reads
numeric suffixes.
"""

import re

from erp_kernel.exceptions import CodeGenerationError

CLIENT_CODE_PREFIX = "SC"
CODE_WIDTH = 3
DEFAULT_INVOICE_ORG = "EP"
OPENING_BALANCE_PO_NUMBER = "OPENING_BALANCE"


def format_code(prefix: str, seq: int, width: int = CODE_WIDTH) -> str:
    """``prefix`` followed by ``seq`` zero-padded to ``width``."""
    if seq < 1:
        raise CodeGenerationError(prefix, f"sequence must be positive, got {seq}")
    return f"{prefix}{seq:0{width}d}"


def parse_suffix(code: str, prefix: str, width: int = CODE_WIDTH) -> int:
    """
    Extract the numeric suffix of ``code`` after ``prefix``.

    Raises:
        CodeGenerationError: ``code`` does not start with ``prefix`` or its
            remainder is not at least ``width`` digits.
    """
    match = re.fullmatch(rf"{re.escape(prefix)}(\d{{{width},}})", code or "")
    if match is None:
        raise CodeGenerationError(prefix, f"malformed existing code {code!r}")
    return int(match.group(1))


def invoice_prefix(org: str, financial_year: str) -> str:
    """Invoice numbers are ``format_code(invoice_prefix(org, fy), seq)``."""
    return f"{org}/{financial_year}/"


def opening_balance_invoice_number(sub_client_code: str, cc_code: str) -> str:
    return f"OPENING_BAL_{sub_client_code}_{cc_code}"
