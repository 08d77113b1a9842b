"""Plotly visualisation helpers for envelope health and deposit routing.

Each function accepts engine output (envelope states or a deposit plan)
and returns a `plotly.graph_objects.Figure` that Streamlit can render via
``st.plotly_chart``.  The ``*_frame`` helpers flatten the same objects
into DataFrames for tables and for the charts themselves.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .models import (
    STATUS_BUFFER_BREACHED,
    STATUS_DUE_SOON,
    STATUS_OK,
    STATUS_OVERDUE,
    DepositPlan,
    EnvelopeState,
)

STATUS_COLORS = {
    STATUS_OK: "#2ca02c",
    STATUS_BUFFER_BREACHED: "#ff7f0e",
    STATUS_DUE_SOON: "#e6b800",
    STATUS_OVERDUE: "#d62728",
}
UNKNOWN_COLOR = "#7f7f7f"


def _empty_figure(title: str = "No data to display") -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title=title)
    return fig


def states_frame(states: Sequence[EnvelopeState]) -> pd.DataFrame:
    """One row per envelope with balance, floors, status and the shortfall to the target.

    ``Target`` is the required-by-due amount when the envelope has a due day,
    otherwise its buffer floor.
    """
    columns = [
        "Envelope", "Group", "Protected", "Balance", "Floor", "Required By Due",
        "Available", "Target", "Shortfall", "Status", "Reason",
    ]
    if not states:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(
        {
            "Envelope": [s.name for s in states],
            "Group": [s.priority_group for s in states],
            "Protected": [s.protected for s in states],
            "Balance": [s.balance_dollars for s in states],
            "Floor": [s.required_floor_dollars for s in states],
            "Required By Due": [s.required_by_due_dollars for s in states],
            "Available": [s.available_to_spend_dollars for s in states],
            "Status": [s.status for s in states],
            "Reason": [s.status_reason or "" for s in states],
        }
    )
    balance = df["Balance"].astype(float)
    df["Target"] = df["Required By Due"].astype(float).fillna(df["Floor"].astype(float))
    df["Shortfall"] = np.where(balance.isna(), np.nan, np.clip(df["Target"] - balance, 0, None)).round(2)
    return df[columns]


def deposit_plan_frame(plan: DepositPlan) -> pd.DataFrame:
    """Deposit plan lines with their bps share as a fraction."""
    df = pd.DataFrame(
        [
            {
                "Envelope": line.envelope_name,
                "Bps": line.bps,
                "Share": line.bps / 10_000,
                "Amount": float(line.amount_dollars),
                "Catch-all": line.envelope_name == plan.catch_all_envelope_name,
            }
            for line in plan.lines
        ],
        columns=["Envelope", "Bps", "Share", "Amount", "Catch-all"],
    )
    return df


def envelope_health_chart(states: Sequence[EnvelopeState], title: str | None = None) -> go.Figure:
    """Balance per envelope against its floor and due-date target.

    Parameters
    ----------
    states : sequence of EnvelopeState
        States as returned by :func:`envelope_engine.issues.detect_issues`.
    title : str, optional
        Chart title.

    Returns
    -------
    plotly.graph_objects.Figure
        Bars of balance coloured by status with floor and target markers.
    """
    df = states_frame(states)
    df = df[df["Balance"].notna()]
    if df.empty:
        return _empty_figure()

    colors = np.array([STATUS_COLORS.get(status, UNKNOWN_COLOR) for status in df["Status"]])
    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=df["Envelope"],
            y=df["Balance"],
            marker_color=colors,
            name="Balance",
            hovertext=df["Reason"],
        )
    )
    fig.add_trace(
        go.Scatter(
            x=df["Envelope"],
            y=df["Floor"],
            mode="markers",
            marker={"symbol": "line-ew-open", "size": 18, "color": "black"},
            name="Buffer floor",
        )
    )
    dated = df[df["Required By Due"].notna()]
    if not dated.empty:
        fig.add_trace(
            go.Scatter(
                x=dated["Envelope"],
                y=dated["Required By Due"],
                mode="markers",
                marker={"symbol": "diamond", "size": 10, "color": "#1f77b4"},
                name="Required by due",
            )
        )
    fig.update_layout(
        title=title or "Envelope health",
        xaxis_title="Envelope",
        yaxis_title="Dollars",
        barmode="overlay",
    )
    return fig


def deposit_allocation_chart(plan: DepositPlan, title: str | None = None) -> go.Figure:
    """Dollars each envelope receives from one deposit.

    Parameters
    ----------
    plan : DepositPlan
        Output of :func:`envelope_engine.routing.compute_deposit_plan`.
    title : str, optional
        Chart title.

    Returns
    -------
    plotly.graph_objects.Figure
        Bar chart of amount per envelope, catch-all highlighted.
    """
    df = deposit_plan_frame(plan)
    df = df[df["Amount"] != 0]
    if df.empty:
        return _empty_figure()
    df = df.assign(Kind=np.where(df["Catch-all"], "Catch-all", "Envelope"))
    fig = px.bar(df, x="Envelope", y="Amount", color="Kind", hover_data=["Bps"])
    fig.update_layout(
        title=title or f"Deposit of ${plan.deposit_amount_dollars:,.2f}",
        xaxis_title="Envelope",
        yaxis_title="Dollars",
    )
    return fig
