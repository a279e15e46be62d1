import logging
import tkinter as tk
from tkinter import ttk, messagebox, filedialog

from core import (
    DEFAULT_PARAMETERS,
    DEFAULT_TAX_REGIME,
    RMD_START_AGE,
    SEQUENCE_RISK_RETURN,
    SEQUENCE_RISK_YEARS,
    AccountBalances,
    AutoOptimize,
    Manual,
    SimulationParameters,
    parse_dollars,
    parse_percent,
    resolve_conversion_policy,
    run,
    load_config,
    parameters_from_config,
    save_config,
    tax_regime_for,
)
from reporting import (
    build_insights,
    comparison_frame,
    format_action_plan,
    plot_results,
    trajectory_frame,
)


logger = logging.getLogger(__name__)


class ToolTip:
    """Simple hover tooltip for a widget."""

    def __init__(self, widget, text: str):
        self.widget = widget
        self.text = text
        self.tipwindow = None
        widget.bind("<Enter>", self._show)
        widget.bind("<Leave>", self._hide)

    def _show(self, _event=None):
        if self.tipwindow or not self.text:
            return
        x = self.widget.winfo_rootx() + 20
        y = self.widget.winfo_rooty() + self.widget.winfo_height() + 10
        self.tipwindow = tw = tk.Toplevel(self.widget)
        tw.wm_overrideredirect(True)
        tw.wm_geometry(f"+{x}+{y}")
        tk.Label(
            tw,
            text=self.text,
            justify=tk.LEFT,
            background="#ffffe0",
            relief=tk.SOLID,
            borderwidth=1,
            font=("tahoma", "8", "normal"),
        ).pack(ipadx=1)

    def _hide(self, _event=None):
        tw = self.tipwindow
        self.tipwindow = None
        if tw is not None:
            tw.destroy()


DEFAULT_GENERAL = {
    "inflation_rate": DEFAULT_PARAMETERS["inflation_rate"],
    "average_return": DEFAULT_PARAMETERS["average_return"],
    "apply_sequence_risk": DEFAULT_PARAMETERS["apply_sequence_risk"],
    "is_pro": False,
}

DEFAULT_USER = {
    key: DEFAULT_PARAMETERS[key]
    for key in (
        "filing_status",
        "current_age",
        "retirement_age",
        "end_age",
        "annual_spending",
        "social_security_amount",
        "social_security_start_age",
        "taxable",
        "tax_deferred",
        "roth",
        "auto_optimize",
        "target_bracket_index",
        "manual_conversion_amount",
    )
}

PERCENT_FIELDS = {"inflation_rate", "average_return"}

DOLLAR_FIELDS = {
    "annual_spending",
    "social_security_amount",
    "taxable",
    "tax_deferred",
    "roth",
    "manual_conversion_amount",
}

BOOL_FIELDS = {"apply_sequence_risk", "is_pro", "auto_optimize"}

LABEL_OVERRIDES = {
    "average_return": "Average Annual Return",
    "apply_sequence_risk": "Stress Early Retirement Returns",
    "is_pro": "Pro Features Enabled",
    "social_security_amount": "Social Security (Yearly)",
    "social_security_start_age": "Social Security Start Age",
    "taxable": "Taxable Brokerage Balance",
    "tax_deferred": "Tax-Deferred (401k/IRA) Balance",
    "roth": "Roth Balance",
    "auto_optimize": "Auto-Optimize Conversions",
    "target_bracket_index": "Fill Bracket Up To",
    "manual_conversion_amount": "Manual Conversion (Yearly)",
}

ENTRY_HELP = {
    "inflation_rate": "Expected annual inflation applied to spending and Social Security (percentage).",
    "average_return": "Fixed annual return applied to every account (percentage).",
    "apply_sequence_risk": (
        f"Force a {SEQUENCE_RISK_RETURN * 100:.0f}% return for the first "
        f"{SEQUENCE_RISK_YEARS} years of retirement."
    ),
    "is_pro": "Pro users may let the simulator choose the conversion amount that fills a bracket.",
    "filing_status": "Tax filing status used for income tax brackets.",
    "current_age": "Current age of the retiree.",
    "retirement_age": "Age at which spending from the portfolio begins.",
    "end_age": "Last age simulated.",
    "annual_spending": "Yearly spending need in today's dollars.",
    "social_security_amount": "Yearly Social Security benefit in today's dollars.",
    "social_security_start_age": "Age when Social Security benefits start.",
    "taxable": "Current balance in taxable brokerage accounts.",
    "tax_deferred": "Current balance in accounts taxed at withdrawal (401k, traditional IRA).",
    "roth": "Current balance in Roth accounts.",
    "auto_optimize": "Convert just enough each year to fill the chosen bracket (Pro).",
    "target_bracket_index": "Highest marginal tax bracket to fill with Roth conversions each year.",
    "manual_conversion_amount": f"Fixed amount converted each year before age {RMD_START_AGE}.",
}


def _load_inputs() -> tuple:
    """Parse GUI inputs and return (SimulationParameters, is_pro)."""
    inflation_rate = parse_percent(gen_entries["inflation_rate"].get())
    average_return = parse_percent(gen_entries["average_return"].get())
    apply_sequence_risk = bool(gen_entries["apply_sequence_risk"].get())
    is_pro = bool(gen_entries["is_pro"].get())

    regime = tax_regime_for(user_entries["filing_status"].get().strip().lower())
    current_age = int(user_entries["current_age"].get())
    retirement_age = int(user_entries["retirement_age"].get())
    end_age = int(user_entries["end_age"].get())
    social_security_start_age = int(user_entries["social_security_start_age"].get())
    if end_age > 120:
        raise ValueError("End age must be 120 or less")

    manual_amount = parse_dollars(user_entries["manual_conversion_amount"].get())
    target_label = user_entries["target_bracket_index"].get()
    requested = (
        AutoOptimize(regime.index_of_rate(parse_percent(target_label)))
        if user_entries["auto_optimize"].get()
        else Manual(manual_amount)
    )

    params = SimulationParameters(
        current_age=current_age,
        retirement_age=retirement_age,
        end_age=end_age,
        annual_spending=parse_dollars(user_entries["annual_spending"].get()),
        inflation_rate=inflation_rate,
        average_return=average_return,
        social_security_amount=parse_dollars(user_entries["social_security_amount"].get()),
        social_security_start_age=social_security_start_age,
        initial_balances=AccountBalances(
            taxable=parse_dollars(user_entries["taxable"].get()),
            tax_deferred=parse_dollars(user_entries["tax_deferred"].get()),
            roth=parse_dollars(user_entries["roth"].get()),
        ),
        conversion_policy=resolve_conversion_policy(requested, is_pro, manual_amount),
        apply_sequence_risk=apply_sequence_risk,
        tax_regime=regime,
    )
    return params, is_pro


def _build_explanation(params: SimulationParameters) -> str:
    """Return a detailed explanation of inputs and calculations."""
    regime = params.tax_regime
    policy = params.conversion_policy
    bal = params.initial_balances
    if isinstance(policy, AutoOptimize):
        bracket = regime.brackets[policy.target_bracket_index]
        strategy = f"Fill up to the {bracket.label} bracket each year"
    elif policy.amount > 0:
        strategy = f"Convert ${policy.amount:,.0f} each year"
    else:
        strategy = "No conversions"

    explanation = [
        "Input values:",
        f"  Current age: {params.current_age}, Retirement age: {params.retirement_age}, End age: {params.end_age}",
        f"  Annual spending (today's dollars): ${params.annual_spending:,.0f}",
        f"  Inflation: {params.inflation_rate * 100:.2f}%",
        f"  Average return: {params.average_return * 100:.2f}%",
        (
            f"  Social Security: ${params.social_security_amount:,.0f} per year "
            f"from age {params.social_security_start_age}"
        ),
        f"  Taxable brokerage: ${bal.taxable:,.0f}",
        f"  Tax-deferred: ${bal.tax_deferred:,.0f}",
        f"  Roth: ${bal.roth:,.0f}",
        f"  Filing status: {regime.name}, standard deduction ${regime.standard_deduction:,.0f}",
        f"  Roth conversion strategy: {strategy}",
        "",
        "Process:",
        "  Spending and Social Security grow with inflation; 85% of benefits are taxable.",
        (
            f"  From age {RMD_START_AGE}, RMDs are taken from tax-deferred savings; "
            "any RMD beyond spending is treated as spent and leaves the portfolio."
        ),
        f"  Before age {RMD_START_AGE}, the ladder scenario converts tax-deferred money to Roth.",
        "  Remaining spending is drawn from brokerage first, then tax-deferred, then Roth.",
        "  Tax is paid from brokerage first, then Roth.",
        (
            f"  The first {SEQUENCE_RISK_YEARS} years of retirement return "
            f"{SEQUENCE_RISK_RETURN * 100:.0f}%."
            if params.apply_sequence_risk
            else ""
        ),
        "  The baseline scenario repeats everything without conversions for comparison.",
    ]
    explanation = [line for line in explanation if line != ""]
    return "\n".join(explanation)


def run_sim():
    """Run the ladder and baseline simulations using the current GUI inputs."""
    try:
        params, is_pro = _load_inputs()
    except ValueError as exc:
        messagebox.showerror("Input error", str(exc))
        return

    result = run(params)
    results = [
        f"Lifetime tax (ladder): ${result.lifetime_tax_ladder:,.0f}",
        f"Lifetime tax (baseline): ${result.lifetime_tax_baseline:,.0f}",
        f"Legacy (ladder): ${result.terminal_legacy_ladder:,.0f}",
        f"Legacy (baseline): ${result.terminal_legacy_baseline:,.0f}",
        "",
    ]
    results.extend(build_insights(result, params.tax_regime))
    plan = format_action_plan(result.conversion_plan)
    if plan:
        results.append("")
        results.append("Conversion action plan:")
        results.extend(plan[:12])
        if len(plan) > 12:
            results.append(f"... and {len(plan) - 12} more years")
    results_var.set("\n".join(results))
    save_config(params, is_pro)

    import matplotlib
    matplotlib.use("TkAgg")
    import matplotlib.pyplot as plt

    plot_results(result)
    plt.show()


def explain_calculations():
    """Show a detailed explanation of the current configuration."""
    try:
        params, _ = _load_inputs()
    except ValueError as exc:
        messagebox.showerror("Input error", str(exc))
        return
    messagebox.showinfo("Simulation Details", _build_explanation(params))


def export_csv():
    """Write both scenarios year by year to CSV files."""
    try:
        params, _ = _load_inputs()
    except ValueError as exc:
        messagebox.showerror("Input error", str(exc))
        return
    path = filedialog.asksaveasfilename(
        defaultextension=".csv", filetypes=[("CSV files", "*.csv")]
    )
    if not path:
        return
    result = run(params)
    trajectory_frame(result.ladder).to_csv(path, index=False)
    comparison_path = path[:-4] + "_comparison.csv" if path.endswith(".csv") else path + "_comparison.csv"
    comparison_frame(result).to_csv(comparison_path)
    logger.info("Exported simulation to %s and %s", path, comparison_path)


def _format_value(key, val) -> str:
    if key in PERCENT_FIELDS:
        return f"{val * 100:.2f}%"
    if key in DOLLAR_FIELDS:
        return f"${val:,.0f}"
    return str(val)


def _bracket_label(index) -> str:
    labels = DEFAULT_TAX_REGIME.labels
    try:
        return labels[int(index)]
    except (ValueError, IndexError):
        return labels[DEFAULT_PARAMETERS["target_bracket_index"]]


def load_defaults():
    for entries, defaults in ((gen_entries, DEFAULT_GENERAL), (user_entries, DEFAULT_USER)):
        for key, default in defaults.items():
            if key in BOOL_FIELDS:
                entries[key].set(bool(default))
            elif key == "filing_status":
                entries[key].set(default)
            elif key == "target_bracket_index":
                entries[key].set(_bracket_label(default))
            else:
                ent = entries[key]
                ent.delete(0, tk.END)
                ent.insert(0, _format_value(key, default))


def _add_rows(frame, defaults, saved, entries, label_width):
    for key, default in defaults.items():
        row = ttk.Frame(frame)
        row.pack(fill="x", pady=2)
        ttk.Label(
            row,
            text=LABEL_OVERRIDES.get(key, key.replace("_", " ").title()),
            width=label_width,
            anchor="w",
        ).pack(side="left")
        val = saved.get(key, default)
        if key in BOOL_FIELDS:
            var = tk.BooleanVar(value=bool(val))
            widget = ttk.Checkbutton(row, variable=var)
            widget.pack(side="left")
            entries[key] = var
        elif key == "filing_status":
            var = tk.StringVar(value=val)
            widget = ttk.Combobox(
                row,
                textvariable=var,
                values=["single", "married", "head_of_household"],
                state="readonly",
            )
            widget.pack(side="left", fill="x", expand=True)
            entries[key] = var
        elif key == "target_bracket_index":
            var = tk.StringVar(value=_bracket_label(val))
            widget = ttk.Combobox(
                row,
                textvariable=var,
                values=DEFAULT_TAX_REGIME.labels,
                state="readonly",
            )
            widget.pack(side="left", fill="x", expand=True)
            entries[key] = var
        else:
            widget = ttk.Entry(row)
            widget.insert(0, _format_value(key, val))
            widget.pack(side="left", fill="x", expand=True)
            entries[key] = widget
        ToolTip(widget, ENTRY_HELP.get(key, ""))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    root = tk.Tk()
    root.title("Roth Conversion Ladder")
    root.geometry("520x940")

    gen_entries = {}
    user_entries = {}

    try:
        config = load_config()
        parameters_from_config(config)
    except (ValueError, TypeError) as exc:
        logger.warning("Ignoring unusable config: %s", exc)
        config = {}
    gen_cfg = config.get("general", {})
    user_cfg = config.get("user", {})

    label_width = max(
        len(LABEL_OVERRIDES.get(k, k.replace("_", " ").title()))
        for k in list(DEFAULT_GENERAL) + list(DEFAULT_USER)
    )

    general_frame = ttk.LabelFrame(root, text="Market & Access")
    general_frame.pack(fill="x", padx=10, pady=5)
    _add_rows(general_frame, DEFAULT_GENERAL, gen_cfg, gen_entries, label_width)

    user_frame = ttk.LabelFrame(root, text="Household & Strategy")
    user_frame.pack(fill="x", padx=10, pady=5)
    _add_rows(user_frame, DEFAULT_USER, user_cfg, user_entries, label_width)

    run_frame = ttk.Frame(root)
    run_frame.pack(fill="x", padx=10, pady=5)
    ttk.Button(run_frame, text="Run Comparison", command=run_sim).pack()
    ttk.Button(run_frame, text="Explain Calculations", command=explain_calculations).pack()
    ttk.Button(run_frame, text="Export CSV", command=export_csv).pack()
    ttk.Button(run_frame, text="Load Defaults", command=load_defaults).pack()

    results_frame = ttk.LabelFrame(root, text="Results")
    results_frame.pack(fill="both", expand=True, padx=10, pady=5)
    results_var = tk.StringVar()
    ttk.Label(results_frame, textvariable=results_var, wraplength=480).pack(anchor="w")

    root.mainloop()
