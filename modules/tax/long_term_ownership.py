"""
Long-Term Ownership Holding Periods

Whole years of ownership between acquisition and disposal, computed with
calendar arithmetic rather than day counts. A position bought on Feb 29
completes its year on Feb 28 of a non-leap year.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date, timedelta


def ownership_years(acquired: date, disposed: date) -> int:
    """
    Number of full years the position was held.

    Examples:
        2014-03-19 -> 2017-03-18: 2
        2014-03-19 -> 2017-03-19: 3
        2020-02-29 -> 2021-02-28: 1
        2020-02-29 -> 2024-02-28: 3
    """
    if disposed < acquired:
        raise ValueError(f"Disposal date {disposed} precedes acquisition date {acquired}")

    years = disposed.year - acquired.year
    if disposed.month < acquired.month:
        years -= 1
    elif disposed.month == acquired.month and disposed.day < acquired.day:
        # Last day of a shorter month counts as the anniversary
        if (disposed + timedelta(days=1)).month == disposed.month:
            years -= 1
    return years


def is_long_term(acquired: date, disposed: date, min_years: int) -> bool:
    return ownership_years(acquired, disposed) >= min_years
