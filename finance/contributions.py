"""
Contribution arithmetic for a flat.

Everything here is pure: callers pass in the flat's entries (anything with
``amount`` and ``user_id``) and get Decimals back. Entries are counted
whatever their approval status; only soft-deleted entries are expected to be
filtered out by the caller.
"""
from decimal import Decimal

ZERO = Decimal("0.00")


def compute_total(entries):
    return sum((entry.amount for entry in entries), ZERO)


def compute_fair_share(entries, user_count):
    """Total of all entries split evenly; zero when the flat has no users."""
    if user_count <= 0:
        return ZERO
    return compute_total(entries) / Decimal(user_count)


def compute_user_contribution(entries, user_id):
    return sum(
        (entry.amount for entry in entries if entry.user_id == user_id),
        ZERO,
    )


def summarize_contributions(entries, users):
    """
    Fair-share breakdown for every user.

    Returns a dict with ``total_amount``, ``fair_share``, ``user_count`` and
    ``members``: one row per user holding ``user``, ``contribution``,
    ``deficit`` (never negative) and ``percentage`` of the fair share met.
    """
    entries = list(entries)
    users = list(users)
    fair_share = compute_fair_share(entries, len(users))

    members = []
    for user in users:
        contribution = compute_user_contribution(entries, user.pk)
        deficit = fair_share - contribution if contribution < fair_share else ZERO
        if fair_share > 0:
            percentage = contribution / fair_share * 100
        else:
            percentage = Decimal("100")
        members.append({
            "user": user,
            "contribution": contribution,
            "deficit": deficit,
            "percentage": percentage.quantize(Decimal("0.1")),
        })

    return {
        "total_amount": compute_total(entries),
        "fair_share": fair_share,
        "user_count": len(users),
        "members": members,
    }
