"""Tables, summaries and charts built from simulation results."""

from __future__ import annotations

import logging

import pandas as pd

from core import RMD_START_AGE, ConversionAction, SimulationResult, Trajectory, marginal_rate


logger = logging.getLogger(__name__)


def trajectory_frame(trajectory: Trajectory) -> pd.DataFrame:
    """One row per simulated year."""
    history = []
    for year in trajectory:
        bal = year.end_of_year_balances
        history.append({
            "Age": year.age,
            "Year": year.calendar_year,
            "Spending": year.spending_need,
            "Social Security": year.social_security_income,
            "RMD": year.rmd_amount,
            "Roth Conversion": year.conversion_amount,
            "Taxable Withdrawal": year.withdrawals.taxable,
            "Tax-Deferred Withdrawal": year.withdrawals.tax_deferred,
            "Roth Withdrawal": year.withdrawals.roth,
            "Taxable Income": year.taxable_income,
            "Tax Paid": year.tax_owed,
            "Shortfall": year.shortfall,
            "Return": year.market_return,
            "Taxable Bal": bal.taxable,
            "Tax-Deferred Bal": bal.tax_deferred,
            "Roth Bal": bal.roth,
            "Total": year.total_balance,
        })
    return pd.DataFrame(history)


def comparison_frame(result: SimulationResult) -> pd.DataFrame:
    """Ladder and baseline side by side, indexed by age."""
    df = pd.DataFrame({
        "Age": [d.age for d in result.yearly_deltas],
        "Ladder Total": [y.total_balance for y in result.ladder],
        "Baseline Total": [y.total_balance for y in result.baseline],
        "Ladder Tax": [y.tax_owed for y in result.ladder],
        "Baseline Tax": [y.tax_owed for y in result.baseline],
        "Balance Delta": [d.balance_delta for d in result.yearly_deltas],
        "Tax Delta": [d.tax_delta for d in result.yearly_deltas],
    })
    return df.set_index("Age")


def format_action_plan(plan: tuple[ConversionAction, ...]) -> list[str]:
    lines = []
    for action in plan:
        lines.append(
            f"Age {action.age} ({action.calendar_year}): convert "
            f"${action.amount:,.0f} (taxable income ${action.taxable_income:,.0f}, "
            f"{action.marginal_rate * 100:.0f}% bracket)"
        )
    return lines


def _peak_rmd_rate(trajectory: Trajectory, regime) -> float:
    rates = [
        marginal_rate(year.taxable_income, regime)
        for year in trajectory
        if year.age >= RMD_START_AGE and year.rmd_amount > 0
    ]
    return max(rates, default=0.0)


def build_insights(result: SimulationResult, regime) -> list[str]:
    """Plain-language verdict on the ladder versus doing nothing."""
    insights = []
    if result.tax_savings > 0:
        insights.append(
            f"The conversion ladder saves ${result.tax_savings:,.0f} in lifetime taxes."
        )
    elif result.tax_savings < 0:
        insights.append(
            f"The conversion ladder costs ${-result.tax_savings:,.0f} more in lifetime taxes."
        )
    else:
        insights.append("The conversion ladder does not change lifetime taxes.")

    if result.legacy_delta >= 0:
        insights.append(f"Projected legacy is ${result.legacy_delta:,.0f} higher than the baseline.")
    else:
        insights.append(f"Projected legacy is ${-result.legacy_delta:,.0f} lower than the baseline.")

    peak = _peak_rmd_rate(result.baseline, regime)
    if peak > 0:
        insights.append(
            f"Without conversions, RMDs are projected to push you into the "
            f"{peak * 100:.0f}% bracket."
        )

    if not result.conversion_plan:
        insights.append("No Roth conversions are scheduled; you are not optimizing for bracket efficiency.")

    for name, trajectory in (("ladder", result.ladder), ("baseline", result.baseline)):
        age = trajectory.depleted_at_age
        if age is not None:
            insights.append(f"Warning: the {name} plan runs out of money at age {age}.")
    return insights


def plot_results(result: SimulationResult):
    """Return a figure with total balances and annual taxes for both scenarios."""
    import matplotlib.pyplot as plt
    from matplotlib.ticker import FuncFormatter

    df = comparison_frame(result)
    fig, (ax_bal, ax_tax) = plt.subplots(2, 1, figsize=(8, 7), sharex=True)

    ax_bal.plot(df.index, df["Ladder Total"], color="indigo", linewidth=2, label="Roth ladder")
    ax_bal.plot(df.index, df["Baseline Total"], color="gray", linestyle="--", label="Baseline")
    ax_bal.set_ylabel("Total balance ($)")
    ax_bal.set_title("Projected balances")
    ax_bal.yaxis.set_major_formatter(FuncFormatter(lambda v, _: f"${v / 1e6:.1f}M"))
    ax_bal.legend()

    width = 0.4
    ax_tax.bar(df.index - width / 2, df["Ladder Tax"], width=width, color="indigo", label="Roth ladder")
    ax_tax.bar(df.index + width / 2, df["Baseline Tax"], width=width, color="gray", label="Baseline")
    ax_tax.set_xlabel("Age")
    ax_tax.set_ylabel("Federal tax ($)")
    ax_tax.set_title("Annual tax burden")
    ax_tax.yaxis.set_major_formatter(FuncFormatter(lambda v, _: f"${v / 1e3:,.0f}k"))
    ax_tax.legend()

    for action in result.conversion_plan:
        ax_bal.axvline(action.age, color="indigo", alpha=0.08)

    fig.tight_layout()
    logger.debug("Plotted %d years", len(df))
    return fig
