"""Core functionality for Roth conversion ladder simulations."""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, replace
from datetime import date
from functools import cached_property
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np
from numba import njit


logger = logging.getLogger(__name__)


# IRS 2024 tax brackets by filing status.  Each list holds the upper bound of
# taxable income for the matching rate in TAX_RATES; the top bracket is open.
TAX_BRACKETS = {
    "single": [11_600, 47_150, 100_525, 191_950, 243_725, 609_350, math.inf],
    "married": [23_200, 94_300, 201_050, 383_900, 487_450, 731_200, math.inf],
    "head_of_household": [16_550, 63_100, 100_500, 191_950, 243_700, 609_350, math.inf],
}

TAX_RATES = {
    status: [0.10, 0.12, 0.22, 0.24, 0.32, 0.35, 0.37]
    for status in TAX_BRACKETS
}

# 2024 standard deductions
STANDARD_DEDUCTIONS = {
    "single": 14_600,
    "married": 29_200,
    "head_of_household": 21_900,
}

# Share of Social Security benefits treated as taxable income
SOCIAL_SECURITY_TAXABLE_SHARE = 0.85

# Simplified Uniform Lifetime Table: 26.5 at 73, one year less per year of age
RMD_START_AGE = 73
RMD_BASE_DIVISOR = 26.5
RMD_MIN_DIVISOR = 6.0

# Sequence-of-returns stress: forced return for the first years of retirement
SEQUENCE_RISK_RETURN = -0.12
SEQUENCE_RISK_YEARS = 3

ACCOUNT_NAMES = ("taxable", "tax_deferred", "roth")
# Least tax-advantaged first, Roth last
DEFAULT_WITHDRAWAL_ORDER = ACCOUNT_NAMES

CONFIG_FILE = "config.json"


class InvalidParameters(ValueError):
    """Raised when simulation inputs cannot describe a meaningful plan."""


def parse_percent(val: str) -> float:
    """Convert a percentage string like '10%' to a float 0.10."""

    try:
        pct = float(val.strip().rstrip("%")) / 100
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid percentage: {val!r}") from exc
    if not 0 <= pct <= 1:
        raise ValueError("Percentage must be between 0% and 100%")
    return pct


def parse_dollars(val: str) -> float:
    """Convert a currency string like '$1,234' to a float 1234.0."""

    try:
        amt = float(val.replace("$", "").replace(",", "").strip())
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid dollar amount: {val!r}") from exc
    if amt < 0:
        raise ValueError("Dollar amount cannot be negative")
    return amt


@dataclass(frozen=True)
class TaxBracket:
    rate: float
    upper_bound: float

    @property
    def label(self) -> str:
        return f"{self.rate * 100:.0f}%"


@dataclass(frozen=True)
class TaxRegime:
    """Progressive bracket table plus a standard deduction.

    Passed explicitly to every tax computation so that another year or
    filing status can be swapped in without touching the simulation.
    """

    brackets: Tuple[TaxBracket, ...]
    standard_deduction: float
    name: str = ""

    def __post_init__(self) -> None:
        if not self.brackets:
            raise ValueError("A tax regime needs at least one bracket")
        bounds = [b.upper_bound for b in self.brackets]
        if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError("Bracket upper bounds must be strictly ascending")
        if not math.isinf(bounds[-1]):
            raise ValueError("The top bracket must be unbounded")
        if self.standard_deduction < 0:
            raise ValueError("Standard deduction cannot be negative")

    @classmethod
    def from_tables(
        cls, bounds, rates, standard_deduction: float, name: str = ""
    ) -> "TaxRegime":
        if len(bounds) != len(rates):
            raise ValueError("Bracket bounds and rates must have the same length")
        brackets = tuple(TaxBracket(r, float(b)) for r, b in zip(rates, bounds))
        return cls(brackets, float(standard_deduction), name)

    @property
    def labels(self) -> list[str]:
        return [b.label for b in self.brackets]

    def index_of_rate(self, rate: float) -> int:
        """Return the bracket index carrying ``rate``."""
        for i, bracket in enumerate(self.brackets):
            if abs(bracket.rate - rate) < 1e-9:
                return i
        raise ValueError(f"No bracket with a {rate * 100:.0f}% rate in {self.name or 'regime'}")

    @cached_property
    def _tax_arrays(self) -> tuple:
        """(lower thresholds, rates, cumulative tax at each threshold)."""
        lower = [0.0] + [b.upper_bound for b in self.brackets[:-1]]
        bracket_arr = np.array(lower, dtype=np.float64)
        rate_arr = np.array([b.rate for b in self.brackets], dtype=np.float64)
        cumulative_tax = np.zeros(len(lower), dtype=np.float64)
        for i in range(1, len(lower)):
            cumulative_tax[i] = cumulative_tax[i - 1] + (lower[i] - lower[i - 1]) * rate_arr[i - 1]
        return bracket_arr, rate_arr, cumulative_tax


def tax_regime_for(filing_status: str) -> TaxRegime:
    if filing_status not in TAX_BRACKETS:
        raise ValueError(f"Unknown filing status: {filing_status}")
    return TAX_REGIMES[filing_status]


TAX_REGIMES = {
    status: TaxRegime.from_tables(
        TAX_BRACKETS[status], TAX_RATES[status], STANDARD_DEDUCTIONS[status], status
    )
    for status in TAX_BRACKETS
}

DEFAULT_TAX_REGIME = TAX_REGIMES["single"]


@njit(cache=True)
def _bracket_tax_jit(
    income: float,
    bracket_arr: np.ndarray,
    rate_arr: np.ndarray,
    cumulative_tax: np.ndarray
) -> float:
    """JIT-compiled marginal tax kernel over post-deduction income."""
    if income <= 0:
        return 0.0

    bracket_idx = np.searchsorted(bracket_arr, income, side='right') - 1
    if bracket_idx < 0:
        bracket_idx = 0
    if bracket_idx >= len(rate_arr):
        bracket_idx = len(rate_arr) - 1

    return cumulative_tax[bracket_idx] + \
           (income - bracket_arr[bracket_idx]) * rate_arr[bracket_idx]


def compute_tax(taxable_income: float, regime: TaxRegime) -> float:
    """Federal tax owed on ``taxable_income`` after the standard deduction."""
    if taxable_income <= 0:
        return 0.0
    net_income = max(0.0, taxable_income - regime.standard_deduction)
    bracket_arr, rate_arr, cumulative_tax = regime._tax_arrays
    return float(_bracket_tax_jit(float(net_income), bracket_arr, rate_arr, cumulative_tax))


def marginal_rate(taxable_income: float, regime: TaxRegime) -> float:
    """Rate applied to the last dollar of ``taxable_income`` (0 if untaxed)."""
    net_income = taxable_income - regime.standard_deduction
    if net_income <= 0:
        return 0.0
    for bracket in regime.brackets:
        if net_income <= bracket.upper_bound:
            return bracket.rate
    return regime.brackets[-1].rate  # pragma: no cover - top bracket is unbounded


def rmd_divisor(age: int) -> float:
    """Simplified Uniform Lifetime Table divisor for ages 73 and up."""
    if age < RMD_START_AGE:
        raise ValueError(f"RMDs do not apply before age {RMD_START_AGE}")
    return max(RMD_MIN_DIVISOR, RMD_BASE_DIVISOR - (age - RMD_START_AGE))


def required_minimum_distribution(balance: float, age: int) -> float:
    if age < RMD_START_AGE or balance <= 0:
        return 0.0
    return min(balance, balance / rmd_divisor(age))


@dataclass(frozen=True)
class AccountBalances:
    taxable: float = 0.0
    tax_deferred: float = 0.0
    roth: float = 0.0

    def __post_init__(self) -> None:
        for name in ACCOUNT_NAMES:
            if getattr(self, name) < 0:
                raise InvalidParameters(f"{name} balance cannot be negative")

    @property
    def total(self) -> float:
        return self.taxable + self.tax_deferred + self.roth

    def grown(self, rate: float) -> "AccountBalances":
        factor = 1 + rate
        return AccountBalances(
            self.taxable * factor, self.tax_deferred * factor, self.roth * factor
        )


@dataclass(frozen=True)
class Withdrawals:
    taxable: float = 0.0
    tax_deferred: float = 0.0
    roth: float = 0.0

    @property
    def total(self) -> float:
        return self.taxable + self.tax_deferred + self.roth


class Draw(NamedTuple):
    balances: AccountBalances
    withdrawals: Withdrawals
    taxable_income: float
    unmet_need: float


def draw(
    accounts: AccountBalances,
    cash_need: float,
    priority: Tuple[str, ...] = DEFAULT_WITHDRAWAL_ORDER,
) -> Draw:
    """
    Meet ``cash_need`` from the accounts in ``priority`` order.

    Each account gives up at most its balance.  Only tax-deferred
    withdrawals count as taxable income: brokerage withdrawals are treated
    as already-taxed principal and Roth withdrawals are tax-free.  Whatever
    cannot be covered is returned as ``unmet_need``.
    """
    if sorted(priority) != sorted(ACCOUNT_NAMES):
        raise ValueError(f"Withdrawal priority must order exactly {ACCOUNT_NAMES}")

    remaining = max(0.0, cash_need)
    balances = {name: getattr(accounts, name) for name in ACCOUNT_NAMES}
    taken = dict.fromkeys(ACCOUNT_NAMES, 0.0)
    for name in priority:
        if remaining <= 0:
            break
        amt = min(balances[name], remaining)
        balances[name] -= amt
        taken[name] += amt
        remaining -= amt

    return Draw(
        balances=AccountBalances(**balances),
        withdrawals=Withdrawals(**taken),
        taxable_income=taken["tax_deferred"],
        unmet_need=remaining,
    )


@dataclass(frozen=True)
class Manual:
    """Convert a fixed amount each eligible year."""

    amount: float = 0.0


@dataclass(frozen=True)
class AutoOptimize:
    """Convert just enough to fill the bracket at ``target_bracket_index``."""

    target_bracket_index: int = 1


ConversionPolicy = Union[Manual, AutoOptimize]


def resolve_conversion_policy(
    requested: ConversionPolicy, is_pro: bool, manual_amount: float = 0.0
) -> ConversionPolicy:
    """
    Apply the entitlement gate before a simulation is built.

    Auto-optimisation is a Pro capability; anyone else asking for it gets
    the manual policy instead.  The simulator never sees the flag.
    """
    if isinstance(requested, AutoOptimize) and not is_pro:
        logger.info(
            "Auto-optimized conversions require Pro; using manual amount %.2f",
            manual_amount,
        )
        return Manual(manual_amount)
    return requested


def decide_conversion(
    accounts: AccountBalances,
    taxable_income_so_far: float,
    policy: ConversionPolicy,
    regime: TaxRegime,
) -> float:
    """Return how much tax-deferred money to move into Roth this year."""
    available = accounts.tax_deferred
    if available <= 0:
        return 0.0

    if isinstance(policy, Manual):
        return min(available, max(0.0, policy.amount))

    if isinstance(policy, AutoOptimize):
        idx = policy.target_bracket_index
        if not 0 <= idx < len(regime.brackets):
            raise ValueError(f"Target bracket index {idx} is outside the tax regime")
        upper = regime.brackets[idx].upper_bound
        if math.isinf(upper):
            # Top bracket has no ceiling; convert everything
            return available
        ceiling = upper + regime.standard_deduction
        return min(available, max(0.0, ceiling - taxable_income_so_far))

    raise TypeError(f"Unsupported conversion policy: {policy!r}")


def _this_year() -> int:
    return date.today().year


@dataclass(frozen=True)
class SimulationParameters:
    current_age: int
    retirement_age: int
    end_age: int
    annual_spending: float
    inflation_rate: float
    average_return: float
    social_security_amount: float
    social_security_start_age: int
    initial_balances: AccountBalances
    conversion_policy: ConversionPolicy = field(default_factory=Manual)
    apply_sequence_risk: bool = False
    tax_regime: TaxRegime = DEFAULT_TAX_REGIME
    start_year: int = field(default_factory=_this_year)

    def __post_init__(self) -> None:
        if min(self.current_age, self.retirement_age, self.end_age,
               self.social_security_start_age) < 0:
            raise InvalidParameters("Ages must be non-negative")
        if self.end_age < self.current_age:
            raise InvalidParameters("End age must be greater than or equal to current age")
        if self.annual_spending < 0:
            raise InvalidParameters("Annual spending cannot be negative")
        if self.social_security_amount < 0:
            raise InvalidParameters("Social Security amount cannot be negative")
        if self.average_return <= -1:
            raise InvalidParameters("Average return must be greater than -100%")
        if self.inflation_rate <= -1:
            raise InvalidParameters("Inflation rate must be greater than -100%")
        if not isinstance(self.initial_balances, AccountBalances):
            raise InvalidParameters("initial_balances must be an AccountBalances")

        policy = self.conversion_policy
        if isinstance(policy, Manual):
            if policy.amount < 0:
                raise InvalidParameters("Manual conversion amount cannot be negative")
        elif isinstance(policy, AutoOptimize):
            if not 0 <= policy.target_bracket_index < len(self.tax_regime.brackets):
                raise InvalidParameters(
                    "target_bracket_index must select one of the configured tax brackets"
                )
        else:
            raise InvalidParameters(f"Unsupported conversion policy: {policy!r}")

    @property
    def years(self) -> int:
        return self.end_age - self.current_age + 1


@dataclass(frozen=True)
class YearRecord:
    age: int
    calendar_year: int
    spending_need: float
    social_security_income: float
    rmd_amount: float
    conversion_amount: float
    withdrawals: Withdrawals
    taxable_income: float
    tax_owed: float
    end_of_year_balances: AccountBalances
    total_balance: float
    # Unmet spending plus unpaid tax once every account is empty
    shortfall: float = 0.0
    market_return: float = 0.0


@dataclass(frozen=True)
class Trajectory:
    years: Tuple[YearRecord, ...]

    def __len__(self) -> int:
        return len(self.years)

    def __iter__(self):
        return iter(self.years)

    def __getitem__(self, idx):
        return self.years[idx]

    @property
    def lifetime_tax(self) -> float:
        return sum(year.tax_owed for year in self.years)

    @property
    def terminal_legacy(self) -> float:
        return self.years[-1].total_balance if self.years else 0.0

    @property
    def total_shortfall(self) -> float:
        return sum(year.shortfall for year in self.years)

    @property
    def depleted_at_age(self) -> Optional[int]:
        """First age whose year ends with nothing left, if any."""
        for year in self.years:
            if year.total_balance <= 0:
                return year.age
        return None


def _market_return(params: SimulationParameters, age: int) -> float:
    if params.apply_sequence_risk and (
        params.retirement_age <= age < params.retirement_age + SEQUENCE_RISK_YEARS
    ):
        return SEQUENCE_RISK_RETURN
    return params.average_return


def simulate_year(
    params: SimulationParameters,
    age: int,
    balances: AccountBalances,
    ladder_enabled: bool,
) -> YearRecord:
    """
    Advance one simulated year starting from ``balances``.

    Order of operations: Social Security, RMD, Roth conversion, withdrawal
    waterfall, tax, tax payment, market return.  The returned record holds
    the end-of-year balances that seed the next year.
    """
    year_idx = age - params.current_age
    inflation_factor = (1 + params.inflation_rate) ** year_idx

    spending_need = (
        params.annual_spending * inflation_factor if age >= params.retirement_age else 0.0
    )
    ss_income = (
        params.social_security_amount * inflation_factor
        if age >= params.social_security_start_age
        else 0.0
    )

    taxable_income = SOCIAL_SECURITY_TAXABLE_SHARE * ss_income
    cash_need = max(0.0, spending_need - ss_income)

    taxable = balances.taxable
    tax_deferred = balances.tax_deferred
    roth = balances.roth

    rmd = 0.0
    if age >= RMD_START_AGE:
        rmd = required_minimum_distribution(tax_deferred, age)
        tax_deferred -= rmd
        taxable_income += rmd
        cash_need = max(0.0, cash_need - rmd)

    conversion = 0.0
    if ladder_enabled and age < RMD_START_AGE and tax_deferred > 0:
        conversion = decide_conversion(
            AccountBalances(taxable, tax_deferred, roth),
            taxable_income,
            params.conversion_policy,
            params.tax_regime,
        )
        tax_deferred -= conversion
        roth += conversion
        taxable_income += conversion

    result = draw(AccountBalances(taxable, tax_deferred, roth), cash_need)
    taxable_income += result.taxable_income
    taxable = result.balances.taxable
    tax_deferred = result.balances.tax_deferred
    roth = result.balances.roth

    tax_owed = compute_tax(taxable_income, params.tax_regime)
    unpaid_tax = 0.0
    if taxable >= tax_owed:
        taxable -= tax_owed
    else:
        diff = tax_owed - taxable
        taxable = 0.0
        unpaid_tax = max(0.0, diff - roth)
        roth = max(0.0, roth - diff)

    rate = _market_return(params, age)
    end_balances = AccountBalances(taxable, tax_deferred, roth).grown(rate)

    withdrawals = replace(
        result.withdrawals, tax_deferred=result.withdrawals.tax_deferred + rmd
    )
    return YearRecord(
        age=age,
        calendar_year=params.start_year + year_idx,
        spending_need=spending_need,
        social_security_income=ss_income,
        rmd_amount=rmd,
        conversion_amount=conversion,
        withdrawals=withdrawals,
        taxable_income=taxable_income,
        tax_owed=tax_owed,
        end_of_year_balances=end_balances,
        total_balance=max(0.0, end_balances.total),
        shortfall=result.unmet_need + unpaid_tax,
        market_return=rate,
    )


def simulate_trajectory(params: SimulationParameters, ladder_enabled: bool) -> Trajectory:
    """Run the year step from ``current_age`` through ``end_age`` inclusive."""
    balances = params.initial_balances
    years = []
    for age in range(params.current_age, params.end_age + 1):
        record = simulate_year(params, age, balances, ladder_enabled)
        years.append(record)
        balances = record.end_of_year_balances

    trajectory = Trajectory(tuple(years))
    depleted = trajectory.depleted_at_age
    if depleted is not None:
        logger.warning(
            "%s scenario depleted at age %d (total shortfall %.2f)",
            "Ladder" if ladder_enabled else "Baseline",
            depleted,
            trajectory.total_shortfall,
        )
    return trajectory


@dataclass(frozen=True)
class ConversionAction:
    age: int
    calendar_year: int
    amount: float
    taxable_income: float
    marginal_rate: float


@dataclass(frozen=True)
class YearDelta:
    age: int
    balance_delta: float
    tax_delta: float


@dataclass(frozen=True)
class SimulationResult:
    ladder: Trajectory
    baseline: Trajectory
    lifetime_tax_ladder: float
    lifetime_tax_baseline: float
    terminal_legacy_ladder: float
    terminal_legacy_baseline: float
    tax_savings: float
    legacy_delta: float
    conversion_plan: Tuple[ConversionAction, ...] = ()
    yearly_deltas: Tuple[YearDelta, ...] = ()


def conversion_plan(trajectory: Trajectory, regime: TaxRegime) -> Tuple[ConversionAction, ...]:
    """Years with a positive conversion, in age order."""
    return tuple(
        ConversionAction(
            age=year.age,
            calendar_year=year.calendar_year,
            amount=year.conversion_amount,
            taxable_income=year.taxable_income,
            marginal_rate=marginal_rate(year.taxable_income, regime),
        )
        for year in trajectory
        if year.conversion_amount > 0
    )


def run(params: SimulationParameters) -> SimulationResult:
    """Simulate the conversion ladder and a no-conversion baseline side by side."""
    ladder = simulate_trajectory(params, ladder_enabled=True)
    baseline = simulate_trajectory(params, ladder_enabled=False)

    lifetime_tax_ladder = ladder.lifetime_tax
    lifetime_tax_baseline = baseline.lifetime_tax
    legacy_ladder = ladder.terminal_legacy
    legacy_baseline = baseline.terminal_legacy

    deltas = tuple(
        YearDelta(
            age=lad.age,
            balance_delta=lad.total_balance - base.total_balance,
            tax_delta=lad.tax_owed - base.tax_owed,
        )
        for lad, base in zip(ladder, baseline)
    )

    logger.debug(
        "Simulated ages %d-%d: ladder tax %.2f vs baseline %.2f, legacy %.2f vs %.2f",
        params.current_age,
        params.end_age,
        lifetime_tax_ladder,
        lifetime_tax_baseline,
        legacy_ladder,
        legacy_baseline,
    )

    return SimulationResult(
        ladder=ladder,
        baseline=baseline,
        lifetime_tax_ladder=lifetime_tax_ladder,
        lifetime_tax_baseline=lifetime_tax_baseline,
        terminal_legacy_ladder=legacy_ladder,
        terminal_legacy_baseline=legacy_baseline,
        tax_savings=lifetime_tax_baseline - lifetime_tax_ladder,
        legacy_delta=legacy_ladder - legacy_baseline,
        conversion_plan=conversion_plan(ladder, params.tax_regime),
        yearly_deltas=deltas,
    )


# Defaults used when a saved configuration is missing a value
DEFAULT_PARAMETERS = {
    "filing_status": "single",
    "current_age": 55,
    "retirement_age": 62,
    "end_age": 95,
    "annual_spending": 100_000,
    "inflation_rate": 0.03,
    "average_return": 0.07,
    "social_security_amount": 42_000,
    "social_security_start_age": 67,
    "taxable": 400_000,
    "tax_deferred": 1_500_000,
    "roth": 200_000,
    "auto_optimize": False,
    "target_bracket_index": 1,
    "manual_conversion_amount": 0,
    "apply_sequence_risk": False,
}


def load_config() -> dict:
    """Load saved configuration if available."""

    if os.path.exists(CONFIG_FILE):
        with open(CONFIG_FILE) as f:
            return json.load(f)
    return {}


def save_config(params: SimulationParameters, is_pro: bool = False) -> None:
    """Persist the provided parameters to disk."""

    if params.tax_regime.name not in TAX_REGIMES:
        raise ValueError(f"Cannot save custom tax regime {params.tax_regime.name!r}")

    policy = params.conversion_policy
    balances = params.initial_balances
    data = {
        "general": {
            "inflation_rate": params.inflation_rate,
            "average_return": params.average_return,
            "apply_sequence_risk": params.apply_sequence_risk,
            "is_pro": is_pro,
        },
        "user": {
            "filing_status": params.tax_regime.name,
            "current_age": params.current_age,
            "retirement_age": params.retirement_age,
            "end_age": params.end_age,
            "annual_spending": params.annual_spending,
            "social_security_amount": params.social_security_amount,
            "social_security_start_age": params.social_security_start_age,
            "taxable": balances.taxable,
            "tax_deferred": balances.tax_deferred,
            "roth": balances.roth,
            "auto_optimize": isinstance(policy, AutoOptimize),
            "target_bracket_index": (
                policy.target_bracket_index
                if isinstance(policy, AutoOptimize)
                else DEFAULT_PARAMETERS["target_bracket_index"]
            ),
            "manual_conversion_amount": (
                policy.amount if isinstance(policy, Manual) else 0.0
            ),
        },
    }
    with open(CONFIG_FILE, "w") as f:
        json.dump(data, f, indent=2)


def parameters_from_config(config: dict, is_pro: Optional[bool] = None) -> SimulationParameters:
    """Build parameters from a saved configuration, filling gaps with defaults."""

    values = dict(DEFAULT_PARAMETERS)
    values.update(config.get("general", {}))
    values.update(config.get("user", {}))
    if is_pro is None:
        is_pro = bool(values.get("is_pro", False))

    manual_amount = float(values["manual_conversion_amount"])
    requested = (
        AutoOptimize(int(values["target_bracket_index"]))
        if values["auto_optimize"]
        else Manual(manual_amount)
    )
    return SimulationParameters(
        current_age=int(values["current_age"]),
        retirement_age=int(values["retirement_age"]),
        end_age=int(values["end_age"]),
        annual_spending=float(values["annual_spending"]),
        inflation_rate=float(values["inflation_rate"]),
        average_return=float(values["average_return"]),
        social_security_amount=float(values["social_security_amount"]),
        social_security_start_age=int(values["social_security_start_age"]),
        initial_balances=AccountBalances(
            taxable=float(values["taxable"]),
            tax_deferred=float(values["tax_deferred"]),
            roth=float(values["roth"]),
        ),
        conversion_policy=resolve_conversion_policy(requested, is_pro, manual_amount),
        apply_sequence_risk=bool(values["apply_sequence_risk"]),
        tax_regime=tax_regime_for(values["filing_status"]),
    )
