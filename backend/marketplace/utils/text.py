def normalize_text(value) -> str:
    """Trimmed, case-folded string; None becomes ""."""
    if value is None:
        return ""
    return str(value).strip().casefold()


def unique_in_order(values) -> list:
    """Distinct truthy values, first occurrence wins."""
    seen = set()
    result = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
