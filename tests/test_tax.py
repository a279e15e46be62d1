import math

import pytest

from core import (
    STANDARD_DEDUCTIONS,
    TAX_REGIMES,
    TaxBracket,
    TaxRegime,
    compute_tax,
    marginal_rate,
    tax_regime_for,
)


@pytest.mark.parametrize(
    "status, income, expected",
    [
        # Single filer cases (income after the standard deduction)
        ("single", 0, 0.0),
        ("single", 11_600, 1_160.0),
        ("single", 11_601, 1_160.12),
        ("single", 47_150, 5_426.0),
        ("single", 47_151, 5_426.22),
        ("single", 100_525, 17_168.5),
        ("single", 100_526, 17_168.74),
        ("single", 191_950, 39_110.5),
        ("single", 191_951, 39_110.82),
        ("single", 243_725, 55_678.5),
        ("single", 243_726, 55_678.85),
        ("single", 609_350, 183_647.25),
        ("single", 609_351, 183_647.62),
        # Married filing jointly cases
        ("married", 0, 0.0),
        ("married", 23_200, 2_320.0),
        ("married", 23_201, 2_320.12),
        ("married", 94_300, 10_852.0),
        ("married", 94_301, 10_852.22),
        ("married", 201_050, 34_337.0),
        ("married", 201_051, 34_337.24),
        ("married", 383_900, 78_221.0),
        ("married", 383_901, 78_221.32),
        ("married", 487_450, 111_357.0),
        ("married", 487_451, 111_357.35),
        ("married", 731_200, 196_669.5),
        ("married", 731_201, 196_669.87),
        # Head of household cases
        ("head_of_household", 0, 0.0),
        ("head_of_household", 16_550, 1_655.0),
        ("head_of_household", 16_551, 1_655.12),
        ("head_of_household", 63_100, 7_241.0),
        ("head_of_household", 63_101, 7_241.22),
        ("head_of_household", 100_500, 15_469.0),
        ("head_of_household", 100_501, 15_469.24),
        ("head_of_household", 191_950, 37_417.0),
        ("head_of_household", 191_951, 37_417.32),
        ("head_of_household", 243_700, 53_977.0),
        ("head_of_household", 243_701, 53_977.35),
        ("head_of_household", 609_350, 181_954.5),
        ("head_of_household", 609_351, 181_954.87),
    ],
)
def test_compute_tax(status, income, expected):
    regime = TAX_REGIMES[status]
    gross = income + STANDARD_DEDUCTIONS[status]
    assert compute_tax(gross, regime) == pytest.approx(expected)


@pytest.mark.parametrize("income", [-50_000, -1, 0, 1, 14_600])
def test_compute_tax_nothing_owed_up_to_deduction(income):
    assert compute_tax(income, TAX_REGIMES["single"]) == 0.0


def test_compute_tax_is_monotonic():
    regime = TAX_REGIMES["single"]
    incomes = [i * 2_500.0 for i in range(-4, 400)]
    taxes = [compute_tax(i, regime) for i in incomes]
    assert all(a <= b for a, b in zip(taxes, taxes[1:]))
    assert all(t >= 0 and math.isfinite(t) for t in taxes)


@pytest.mark.parametrize("status", ["single", "married", "head_of_household"])
def test_compute_tax_is_continuous_at_bracket_bounds(status):
    regime = TAX_REGIMES[status]
    eps = 1.0
    for bracket, above in zip(regime.brackets, regime.brackets[1:]):
        bound = bracket.upper_bound + regime.standard_deduction
        step = compute_tax(bound + eps, regime) - compute_tax(bound, regime)
        assert step == pytest.approx(eps * above.rate)


@pytest.mark.parametrize(
    "income, expected",
    [
        (0, 0.0),
        (14_600, 0.0),
        (14_601, 0.10),
        (61_750, 0.12),
        (61_751, 0.22),
        (5_000_000, 0.37),
    ],
)
def test_marginal_rate(income, expected):
    assert marginal_rate(income, TAX_REGIMES["single"]) == expected


def test_custom_regime_is_injected():
    flat = TaxRegime((TaxBracket(0.20, math.inf),), standard_deduction=0.0, name="flat")
    assert compute_tax(50_000, flat) == pytest.approx(10_000)
    assert flat.labels == ["20%"]


def test_regime_index_of_rate():
    regime = TAX_REGIMES["married"]
    assert regime.index_of_rate(0.22) == 2
    with pytest.raises(ValueError):
        regime.index_of_rate(0.15)


@pytest.mark.parametrize(
    "brackets",
    [
        (),
        (TaxBracket(0.10, 10_000), TaxBracket(0.20, 50_000)),
        (TaxBracket(0.10, 50_000), TaxBracket(0.20, 10_000), TaxBracket(0.30, math.inf)),
    ],
)
def test_regime_rejects_bad_tables(brackets):
    with pytest.raises(ValueError):
        TaxRegime(brackets, standard_deduction=0.0)


def test_unknown_filing_status():
    with pytest.raises(ValueError):
        tax_regime_for("widowed")
