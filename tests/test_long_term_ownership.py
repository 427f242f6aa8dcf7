"""
Unit Tests for Long-Term Ownership Holding Periods

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date

import pytest

from modules.tax.long_term_ownership import is_long_term, ownership_years


@pytest.mark.parametrize("acquired,disposed,years", [
    (date(2014, 3, 19), date(2017, 3, 18), 2),
    (date(2014, 3, 19), date(2017, 3, 19), 3),
    (date(2014, 3, 19), date(2014, 3, 19), 0),
    (date(2014, 3, 19), date(2015, 2, 1), 0),
    (date(2020, 2, 29), date(2021, 2, 28), 1),
    (date(2020, 2, 29), date(2024, 2, 28), 3),
    (date(2020, 2, 29), date(2024, 2, 29), 4),
    (date(2019, 1, 31), date(2022, 1, 30), 2),
])
def test_ownership_years(acquired, disposed, years):
    assert ownership_years(acquired, disposed) == years


def test_disposal_before_acquisition():
    with pytest.raises(ValueError):
        ownership_years(date(2020, 1, 2), date(2019, 1, 2))


def test_is_long_term_boundary():
    assert not is_long_term(date(2019, 3, 19), date(2022, 3, 18), 3)
    assert is_long_term(date(2019, 3, 19), date(2022, 3, 19), 3)
