import pytest

from core import TAX_REGIMES, AccountBalances, AutoOptimize, Manual, SimulationParameters, run
from reporting import (
    build_insights,
    comparison_frame,
    format_action_plan,
    plot_results,
    trajectory_frame,
)

SINGLE = TAX_REGIMES["single"]


@pytest.fixture(scope="module")
def result():
    params = SimulationParameters(
        current_age=55,
        retirement_age=62,
        end_age=95,
        annual_spending=100_000.0,
        inflation_rate=0.03,
        average_return=0.07,
        social_security_amount=42_000.0,
        social_security_start_age=67,
        initial_balances=AccountBalances(400_000.0, 1_500_000.0, 200_000.0),
        conversion_policy=AutoOptimize(1),
        start_year=2025,
    )
    return run(params)


def test_trajectory_frame(result):
    df = trajectory_frame(result.ladder)

    assert len(df) == len(result.ladder)
    assert list(df["Age"]) == list(range(55, 96))
    assert df["Tax Paid"].sum() == pytest.approx(result.lifetime_tax_ladder)
    assert df["Total"].iloc[-1] == pytest.approx(result.terminal_legacy_ladder)
    assert (df[["Taxable Bal", "Tax-Deferred Bal", "Roth Bal"]] >= 0).all().all()


def test_comparison_frame(result):
    df = comparison_frame(result)

    assert df.index.name == "Age"
    assert df.index[0] == 55 and df.index[-1] == 95
    assert df["Balance Delta"].iloc[-1] == pytest.approx(result.legacy_delta)
    assert (df["Baseline Tax"].sum() - df["Ladder Tax"].sum()) == pytest.approx(result.tax_savings)


def test_format_action_plan(result):
    lines = format_action_plan(result.conversion_plan)

    assert len(lines) == len(result.conversion_plan)
    assert lines[0] == "Age 55 (2025): convert $61,750 (taxable income $61,750, 12% bracket)"


def test_insights_for_beneficial_ladder(result):
    insights = build_insights(result, SINGLE)

    assert insights[0].startswith("The conversion ladder saves $")
    assert insights[1].startswith("Projected legacy is $")
    assert any("RMDs are projected to push you into the" in line for line in insights)
    assert not any(line.startswith("Warning") for line in insights)


def test_insights_warn_on_depletion():
    params = SimulationParameters(
        current_age=65,
        retirement_age=65,
        end_age=70,
        annual_spending=60_000.0,
        inflation_rate=0.0,
        average_return=0.0,
        social_security_amount=0.0,
        social_security_start_age=70,
        initial_balances=AccountBalances(taxable=100_000.0),
        conversion_policy=Manual(0.0),
    )
    insights = build_insights(run(params), SINGLE)

    assert "Warning: the ladder plan runs out of money at age 66." in insights
    assert "Warning: the baseline plan runs out of money at age 66." in insights
    assert any("not optimizing" in line for line in insights)


def test_plot_results(result):
    matplotlib = pytest.importorskip("matplotlib")
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    fig = plot_results(result)
    try:
        assert len(fig.axes) == 2
        assert fig.axes[0].get_title() == "Projected balances"
    finally:
        plt.close(fig)
