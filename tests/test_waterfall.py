import pytest

from core import AccountBalances, draw


def test_taxable_drawn_first():
    result = draw(AccountBalances(100_000.0, 200_000.0, 50_000.0), 40_000.0)

    assert result.withdrawals.taxable == 40_000.0
    assert result.withdrawals.tax_deferred == 0.0
    assert result.withdrawals.roth == 0.0
    assert result.balances == AccountBalances(60_000.0, 200_000.0, 50_000.0)
    assert result.taxable_income == 0.0
    assert result.unmet_need == 0.0


def test_spills_into_tax_deferred_then_roth():
    balances, withdrawals, taxable_income, unmet = draw(
        AccountBalances(10_000.0, 30_000.0, 50_000.0), 60_000.0
    )

    assert withdrawals.taxable == 10_000.0
    assert withdrawals.tax_deferred == 30_000.0
    assert withdrawals.roth == 20_000.0
    assert taxable_income == 30_000.0
    assert balances == AccountBalances(0.0, 0.0, 30_000.0)
    assert unmet == 0.0


def test_exhausted_accounts_leave_unmet_need():
    result = draw(AccountBalances(1_000.0, 2_000.0, 3_000.0), 10_000.0)

    assert result.withdrawals.total == 6_000.0
    assert result.unmet_need == 4_000.0
    assert result.balances.total == 0.0


def test_custom_priority():
    result = draw(
        AccountBalances(10_000.0, 30_000.0, 50_000.0),
        35_000.0,
        priority=("tax_deferred", "roth", "taxable"),
    )
    assert result.withdrawals.tax_deferred == 30_000.0
    assert result.withdrawals.roth == 5_000.0
    assert result.withdrawals.taxable == 0.0
    assert result.taxable_income == 30_000.0


@pytest.mark.parametrize("priority", [("taxable", "roth"), ("taxable", "taxable", "roth")])
def test_invalid_priority(priority):
    with pytest.raises(ValueError):
        draw(AccountBalances(1.0, 1.0, 1.0), 1.0, priority=priority)


@pytest.mark.parametrize("need", [0.0, -500.0])
def test_no_need_draws_nothing(need):
    accounts = AccountBalances(1_000.0, 1_000.0, 1_000.0)
    result = draw(accounts, need)
    assert result.balances == accounts
    assert result.withdrawals.total == 0.0
    assert result.unmet_need == 0.0


@pytest.mark.parametrize(
    "accounts, need",
    [
        (AccountBalances(0.0, 0.0, 0.0), 5_000.0),
        (AccountBalances(123.45, 678.9, 0.01), 500.0),
        (AccountBalances(50_000.0, 0.0, 25_000.0), 60_000.0),
        (AccountBalances(400_000.0, 1_500_000.0, 200_000.0), 3_000_000.0),
        (AccountBalances(1.0, 2.0, 3.0), 0.5),
    ],
)
def test_withdrawals_conserve_money(accounts, need):
    result = draw(accounts, need)

    assert result.withdrawals.total == pytest.approx(min(need, accounts.total))
    assert result.withdrawals.total + result.unmet_need == pytest.approx(need)
    assert result.balances.total + result.withdrawals.total == pytest.approx(accounts.total)
    assert min(result.balances.taxable, result.balances.tax_deferred, result.balances.roth) >= 0
