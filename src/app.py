from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, ScrollableContainer, Vertical
from textual.widgets import Button, DataTable, Footer, Header, Input, Select, Static

from backend import CalculatorKind, run_calculation
from errors import CalculatorError

EXPORT_DIR = Path("exports")
DEFAULT_SCHEME = "119551"

CALCULATOR_OPTIONS = [
    ("Lumpsum", CalculatorKind.LUMPSUM.value),
    ("SIP", CalculatorKind.SIP.value),
    ("Step-up SIP", CalculatorKind.STEP_UP_SIP.value),
    ("SWP", CalculatorKind.SWP.value),
    ("Step-up SWP", CalculatorKind.STEP_UP_SWP.value),
    ("Period returns", CalculatorKind.PERIOD_RETURNS.value),
    ("Rolling returns", CalculatorKind.ROLLING_RETURNS.value),
    ("Rolling series", CalculatorKind.ROLLING_SERIES.value),
]

# Which request field the "Amount" and "Corpus" inputs feed, per calculator
AMOUNT_FIELDS = {
    CalculatorKind.LUMPSUM: "investment",
    CalculatorKind.SIP: "amount",
    CalculatorKind.STEP_UP_SIP: "amount",
    CalculatorKind.SWP: "amount",
    CalculatorKind.STEP_UP_SWP: "initialWithdrawal",
}
CORPUS_FIELDS = {
    CalculatorKind.SWP: "initialInvestment",
    CalculatorKind.STEP_UP_SWP: "initialCorpus",
}

PERCENT_KEYS = {
    "simpleReturn",
    "annualizedReturn",
    "percentChange",
    "annualizedPercent",
    "percentReturn",
    "averageReturn",
    "maxReturn",
    "minReturn",
    "positivePercentage",
}
GAIN_KEYS = {"totalGainLoss", "absoluteChange"}
EVENT_LIST_KEYS = ("events", "returns", "rollingReturns")


def parse_extra(text: str) -> dict[str, Any]:
    """Parse "key=value, key=value" into a params dict; numeric values become floats."""
    params: dict[str, Any] = {}
    for item in text.split(","):
        if "=" not in item:
            continue
        key, value = (part.strip() for part in item.split("=", 1))
        if not key:
            continue
        try:
            params[key] = float(value)
        except ValueError:
            params[key] = value
    return params


def build_params(
    kind: CalculatorKind | str,
    amount: str = "",
    corpus: str = "",
    from_date: str = "",
    to_date: str = "",
    frequency: str = "",
    extra: str = "",
) -> dict[str, Any]:
    """Collect the form inputs into a request body for one calculator."""
    kind = CalculatorKind(kind)
    params: dict[str, Any] = {}
    if kind in AMOUNT_FIELDS and amount.strip():
        params[AMOUNT_FIELDS[kind]] = amount.strip()
    if kind in CORPUS_FIELDS and corpus.strip():
        params[CORPUS_FIELDS[kind]] = corpus.strip()
    if kind is CalculatorKind.ROLLING_RETURNS:
        # single-anchor rolling returns take the "To" input as the anchor date
        if to_date.strip():
            params["on"] = to_date.strip()
    else:
        if from_date.strip():
            params["from"] = from_date.strip()
        if to_date.strip():
            params["to"] = to_date.strip()
    if frequency and kind in (CalculatorKind.SIP, CalculatorKind.STEP_UP_SIP, CalculatorKind.SWP):
        params["frequency"] = frequency
    params.update(parse_extra(extra))
    return params


def color_value(value: float | None, width: int = 9) -> Text:
    """Color a percentage green (positive) or red (negative), brighter for larger moves."""
    if value is None:
        return Text("-".rjust(width), style="dim")
    shade = int(np.clip(120 + abs(value) * 6, 120, 255))
    style = f"rgb(0,{shade},0)" if value >= 0 else f"rgb({shade},0,0)"
    formatted = f"{value:+.2f}%"
    return Text(formatted.rjust(width), style=style)


def color_money(value: float | None, width: int = 14) -> Text:
    """Color a gain/loss amount green or red, right-aligned."""
    if value is None:
        return Text("-".rjust(width), style="dim")
    style = "green" if value >= 0 else "red"
    return Text(f"{value:,.2f}".rjust(width), style=style)


def format_cell(key: str, value: Any) -> Text:
    if key in PERCENT_KEYS and (value is None or isinstance(value, (int, float))):
        return color_value(value)
    if key in GAIN_KEYS and (value is None or isinstance(value, (int, float))):
        return color_money(value)
    if value is None:
        return Text("-", style="dim")
    if isinstance(value, bool):
        return Text("yes" if value else "no", style="yellow" if value else "")
    if isinstance(value, float):
        return Text(f"{value:,.6f}".rstrip("0").rstrip("."))
    return Text(str(value))


def summary_rows(result: dict) -> list[tuple[str, Any]]:
    """Flatten a calculator result into (label, value) rows, leaving out the event lists."""
    rows: list[tuple[str, Any]] = []
    for key, value in result.items():
        if key in EVENT_LIST_KEYS or key == "results":
            continue
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                if isinstance(sub_value, (dict, list)):
                    continue
                rows.append((f"{key}.{sub_key}", sub_value))
        elif not isinstance(value, list):
            rows.append((key, value))
    return rows


def event_frame(result: dict) -> pd.DataFrame:
    """Tabulate the per-event part of a result (events, periods, rolling points or intervals)."""
    for key in EVENT_LIST_KEYS:
        if result.get(key):
            return pd.DataFrame(result[key])
    if result.get("results"):
        return pd.DataFrame(
            [{"interval": name, **values} for name, values in result["results"].items()]
        )
    return pd.DataFrame()


class NavCalcApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }

    #controls {
        height: auto;
        margin: 1 2;
        padding: 1;
    }

    #controls Horizontal {
        height: auto;
        width: 100%;
    }

    #main_content {
        height: 1fr;
        margin: 0 2 1 2;
    }

    #summary_container {
        height: 1fr;
        width: 100%;
    }

    #events_container {
        height: 2fr;
        width: 100%;
        margin-top: 1;
        border: solid green;
        padding: 1;
    }

    #events_title {
        text-style: bold;
        margin-bottom: 1;
    }

    #status {
        height: 3;
        margin: 0 2 1 2;
    }

    Input {
        width: 16;
    }

    #extra_input {
        width: 1fr;
    }

    Select {
        width: 22;
    }

    Button {
        min-width: 6;
        margin-left: 1;
    }
    """

    BINDINGS = [
        ("e", "export", "Export"),
        ("r", "calculate", "Recalculate"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self.kind = CalculatorKind.LUMPSUM
        self.scheme_code = DEFAULT_SCHEME
        self.result: dict = {}
        self.events = pd.DataFrame()

    def compose(self) -> ComposeResult:
        today = dt.date.today()
        yield Header()
        with Container(id="controls"):
            with Horizontal():
                yield Input(value=self.scheme_code, placeholder="Scheme code", id="scheme_input")
                yield Select(options=CALCULATOR_OPTIONS, value=self.kind.value, id="kind_select")
                yield Input(value="10000", placeholder="Amount", id="amount_input")
                yield Input(value="", placeholder="Corpus (SWP)", id="corpus_input")
                yield Select(
                    options=[(name.title(), name) for name in ("monthly", "quarterly", "halfyearly", "yearly", "weekly", "daily")],
                    value="monthly",
                    id="frequency_select",
                )
            with Horizontal():
                yield Input(value=f"{today.year - 5}-01-01", placeholder="From YYYY-MM-DD", id="from_input")
                yield Input(value=f"{today.year - 1}-12-31", placeholder="To YYYY-MM-DD", id="to_input")
                yield Input(value="", placeholder="stepUpValue=10, onGap=skip, period=yearly", id="extra_input")
                yield Button("Calculate", id="calculate_button")
                yield Button("Export", id="export_button")
        with Vertical(id="main_content"):
            with ScrollableContainer(id="summary_container"):
                yield DataTable(id="summary_table")
            with ScrollableContainer(id="events_container"):
                yield Static("Events", id="events_title")
                yield DataTable(id="events_table")
        yield Static("Ready", id="status")
        yield Footer()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "calculate_button":
            self.refresh_result()
        elif event.button.id == "export_button":
            self.export_report()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.refresh_result()

    def on_select_changed(self, event: Select.Changed) -> None:
        if event.select.id == "kind_select" and event.value is not Select.BLANK:
            self.kind = CalculatorKind(str(event.value))

    def set_status(self, message: str) -> None:
        self.query_one("#status", Static).update(message)

    def action_calculate(self) -> None:
        self.refresh_result()

    def action_export(self) -> None:
        self.export_report()

    def current_params(self) -> dict[str, Any]:
        frequency = self.query_one("#frequency_select", Select).value
        return build_params(
            self.kind,
            amount=self.query_one("#amount_input", Input).value,
            corpus=self.query_one("#corpus_input", Input).value,
            from_date=self.query_one("#from_input", Input).value,
            to_date=self.query_one("#to_input", Input).value,
            frequency="" if frequency is Select.BLANK else str(frequency),
            extra=self.query_one("#extra_input", Input).value,
        )

    def refresh_result(self) -> None:
        self.scheme_code = self.query_one("#scheme_input", Input).value.strip()
        if not self.scheme_code:
            self.set_status("Enter a scheme code.")
            return
        try:
            self.set_status("Calculating...")
            self.result = run_calculation(self.kind, self.scheme_code, self.current_params())
            self.events = event_frame(self.result)
            self.render_summary()
            self.render_events()
            self.set_status(f"{self.kind.value} for scheme {self.scheme_code}: {len(self.events)} rows.")
        except CalculatorError as exc:
            self.set_status(f"Error: {exc.message}")
        except Exception as exc:  # pragma: no cover - UI feedback
            self.set_status(f"Error: {exc}")

    def render_summary(self) -> None:
        table = self.query_one("#summary_table", DataTable)
        table.clear(columns=True)
        table.add_column("Field", key="field", width=28)
        table.add_column("Value", key="value", width=24)
        for key, value in summary_rows(self.result):
            table.add_row(Text(key, style="bold"), format_cell(key.split(".")[-1], value))

    def render_events(self) -> None:
        table = self.query_one("#events_table", DataTable)
        table.clear(columns=True)
        if self.events.empty:
            return
        columns = list(self.events.columns)
        for column in columns:
            table.add_column(column, key=column)
        for record in self.events.to_dict("records"):
            cells = []
            for column in columns:
                value = record.get(column)
                if isinstance(value, float) and np.isnan(value):
                    value = None
                cells.append(format_cell(column, value))
            table.add_row(*cells)

    def export_report(self) -> None:
        if self.events.empty:
            self.set_status("Nothing to export.")
            return
        EXPORT_DIR.mkdir(parents=True, exist_ok=True)
        path = EXPORT_DIR / f"{self.scheme_code}-{self.kind.value}.csv"
        self.events.to_csv(path, index=False)
        self.set_status(f"Exported {path.name}")


if __name__ == "__main__":
    NavCalcApp().run()
