import re


MERCHANT_CATEGORY_MAP = {
    "uber eats": "Dining Out",
    "doordash": "Dining Out",
    "skip the dishes": "Dining Out",
    "mcdonalds": "Dining Out",
    "starbucks": "Dining Out",
    "tim hortons": "Dining Out",
    "uber": "Transportation",
    "lyft": "Transportation",
    "gas": "Transportation",
    "petro canada": "Transportation",
    "shell": "Transportation",
    "esso": "Transportation",
    "amazon": "Shopping",
    "walmart": "Groceries",
    "costco": "Groceries",
    "loblaws": "Groceries",
    "no frills": "Groceries",
    "metro": "Groceries",
    "netflix": "Subscriptions",
    "spotify": "Subscriptions",
    "disney": "Subscriptions",
    "apple": "Subscriptions",
    "google": "Subscriptions",
}

# "uber eats" must win over "uber".
_BY_LENGTH = sorted(MERCHANT_CATEGORY_MAP.items(), key=lambda item: len(item[0]), reverse=True)


def suggest_category(description):
    text = (description or "").lower()
    for merchant, category in _BY_LENGTH:
        if merchant in text:
            return category
    return None


def resolve_category(categories, category_name=None, description=None):
    """Pick a category row by explicit name, falling back to the merchant map."""
    by_name = {category["name"].lower(): category for category in categories}
    if category_name and category_name.lower() in by_name:
        return by_name[category_name.lower()]
    suggested = suggest_category(description)
    if suggested:
        return by_name.get(suggested.lower())
    return None


def matches_pattern(description, rule_type, pattern, case_sensitive=False):
    """True when *description* satisfies a categorization rule's pattern."""
    if not description:
        return False
    if rule_type == "regex":
        try:
            return re.search(pattern, description, 0 if case_sensitive else re.IGNORECASE) is not None
        except re.error:
            return False

    text = description if case_sensitive else description.lower()
    needle = pattern if case_sensitive else pattern.lower()
    if rule_type == "contains":
        return needle in text
    if rule_type == "starts_with":
        return text.startswith(needle)
    if rule_type == "ends_with":
        return text.endswith(needle)
    if rule_type == "exact":
        return text == needle
    return False


def first_matching_rule(rules, description):
    # rules arrive sorted by rule_order; the first hit wins
    for rule in rules:
        if matches_pattern(description, rule["rule_type"], rule["pattern"], bool(rule["case_sensitive"])):
            return rule
    return None
