"""
Turn plain-English instructions ("When I buy from Costco, categorize as
Groceries") into learning rules, and match rules against transactions.
"""

import re


TEACH_PATTERNS = [
    (
        re.compile(
            r"(?:when|if|whenever)\s+(?:i\s+)?(?:buy|purchase|shop|spend)\s+(?:from|at)\s+(.+?),?\s+"
            r"(?:categorize|mark|set|put)\s+(?:it\s+)?(?:as|in|to)\s+(.+)",
            re.IGNORECASE,
        ),
        lambda m: ("categorization", m.group(1), {"category_name": m.group(2).strip()}, 7),
    ),
    (
        re.compile(r"(?:mark|set|put)\s+(.+?)\s+(?:as|in|to)\s+(.+?)\s*(?:category)?$", re.IGNORECASE),
        lambda m: ("categorization", m.group(1), {"category_name": m.group(2).strip()}, 6),
    ),
    (
        re.compile(r"(.+?)\s+(?:is|means|equals|=)\s+(?:actually\s+)?(.+)", re.IGNORECASE),
        lambda m: ("merchant", m.group(1), {"normalized_name": m.group(2).strip()}, 8),
    ),
    (
        re.compile(
            r"(?:alert|notify|warn|tell)\s+me\s+(?:when|if)\s+(?:i\s+)?(?:spend|spending)\s+"
            r"(?:over|more than|above)\s+\$?(\d+)",
            re.IGNORECASE,
        ),
        lambda m: ("amount_threshold", "expense", {"threshold": float(m.group(1)), "alert": True}, 5),
    ),
    (
        re.compile(r"(?:ignore|skip|hide)\s+(?:transactions?\s+)?(?:from|at)\s+(.+)", re.IGNORECASE),
        lambda m: ("custom", m.group(1), {"ignore": True}, 4),
    ),
    (
        re.compile(r"(?:always\s+)?tag\s+(.+?)\s+(?:transactions?\s+)?(?:with|as)\s+(.+)", re.IGNORECASE),
        lambda m: ("custom", m.group(1), {"add_tag": m.group(2).strip()}, 6),
    ),
]

TEACH_HINT = (
    "Try phrases like 'When I buy from Costco, categorize as Groceries', "
    "'Alert me when I spend over $500' or 'Ignore transactions from PayPal'."
)


def parse_instruction(instruction):
    """Return a rule dict for the first pattern that matches, else ``None``."""
    for pattern, build in TEACH_PATTERNS:
        match = pattern.search(instruction)
        if match:
            rule_type, rule_pattern, action, priority = build(match)
            return {
                "rule_type": rule_type,
                "pattern": rule_pattern.strip(),
                "action": action,
                "priority": priority,
            }
    return None


def describe_rule(rule):
    action = rule["action"]
    pattern = rule["pattern"]
    if rule["rule_type"] == "categorization":
        return f'categorize "{pattern}" transactions as "{action.get("category_name")}"'
    if rule["rule_type"] == "merchant":
        return f'recognize "{pattern}" as "{action.get("normalized_name")}"'
    if rule["rule_type"] == "amount_threshold":
        return f"alert you when spending exceeds ${action.get('threshold'):g}"
    if action.get("ignore"):
        return f'ignore transactions from "{pattern}"'
    if action.get("add_tag"):
        return f'tag "{pattern}" transactions with "{action["add_tag"]}"'
    return f'apply custom rule for "{pattern}"'


def rule_matches(rule, description, amount=None):
    if rule["rule_type"] == "amount_threshold":
        threshold = rule["action"].get("threshold")
        return amount is not None and threshold is not None and abs(amount) > threshold
    return rule["pattern"].lower() in (description or "").lower()
