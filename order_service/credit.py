"""Single credit-sale predicate used by every report.

Only the canonical fields count. Records that still rely on other field names
or on "customer present and unpaid" need a data backfill, not another rule.
"""

CREDIT = "credit"
_TRUTHY = {"1", "true", "yes"}


def _norm(value) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).strip().lower()


def is_credit_sale(record) -> bool:
    """True iff payment_method or payment_status is Credit, or is_credit is set.

    ``record`` may be a mapping or any object exposing those attributes.
    """
    if record is None:
        return False
    if isinstance(record, dict):
        get = record.get
    else:
        def get(name):
            return getattr(record, name, None)

    if _norm(get("payment_method")) == CREDIT:
        return True
    if _norm(get("payment_status")) == CREDIT:
        return True
    flag = get("is_credit")
    if isinstance(flag, bool):
        return flag
    return _norm(flag) in _TRUTHY
