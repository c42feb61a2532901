from __future__ import annotations

import pytest

from market_data import models as market_models


@pytest.fixture(autouse=True)
def reset_parse_failures():
    market_models.PARSE_FAILURES.clear()
    yield
    market_models.PARSE_FAILURES.clear()
