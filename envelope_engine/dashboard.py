"""Streamlit dashboard over the envelope engine.

Run with ``streamlit run envelope_engine/dashboard.py``.  Balances are typed
in (or pasted) since live bank sync is out of scope; everything else comes
from the configured SQLite store.
"""

from __future__ import annotations

import logging
from datetime import date

import pandas as pd
import streamlit as st

from envelope_engine import config
from envelope_engine.budget_import import load_rule_overrides, sync_budget
from envelope_engine.db import EnvelopeStore
from envelope_engine.floors import compute_envelope_states
from envelope_engine.formatting import escape_dollar_for_markdown, format_currency, render_plan
from envelope_engine.issues import detect_issues, snapshot_dates_needed
from envelope_engine.models import AccountBalance
from envelope_engine.plans import generate_plans
from envelope_engine.routing import compute_deposit_plan
from envelope_engine.visualization import (
    deposit_allocation_chart,
    deposit_plan_frame,
    envelope_health_chart,
    states_frame,
)

logger = logging.getLogger(__name__)


def _store() -> EnvelopeStore:
    store = EnvelopeStore()
    store.init_db()
    return store


def _render_sidebar(store: EnvelopeStore, settings: config.EngineSettings) -> None:
    st.sidebar.subheader("📥 Import budget CSV")
    uploaded = st.sidebar.file_uploader("Envelope/Budget CSV", type=["csv"])
    if uploaded is not None and st.sidebar.button("Sync budget"):
        try:
            summary = sync_budget(
                store,
                uploaded,
                rule_overrides=load_rule_overrides(),
                catch_all_envelope_name=settings.catch_all_envelope_name,
            )
        except ValueError as exc:
            st.sidebar.error(str(exc))
        else:
            st.sidebar.success(
                f"Imported {summary.envelope_count} envelopes "
                f"({format_currency(summary.total_budget_dollars)})"
            )
            for diff in summary.budget_diffs:
                st.sidebar.text(f"  • {diff}")

    st.sidebar.subheader("⚙️ Settings")
    st.sidebar.text(f"Catch-all: {settings.catch_all_envelope_name}")
    st.sidebar.text(f"Max change/deposit: {format_currency(settings.max_adjustment_per_deposit_dollars)}")
    st.sidebar.text(f"Due-soon window: {settings.due_soon_window_days} days")


def _balance_editor(rules) -> list:
    if 'balances' not in st.session_state:
        st.session_state.balances = {rule.name: None for rule in rules}
    editor_df = pd.DataFrame(
        {
            "Envelope": [rule.name for rule in rules],
            "Balance": [st.session_state.balances.get(rule.name) for rule in rules],
        }
    )
    edited = st.data_editor(editor_df, hide_index=True, disabled=["Envelope"], use_container_width=True)
    accounts = []
    for _, row in edited.iterrows():
        balance = None if pd.isna(row["Balance"]) else float(row["Balance"])
        st.session_state.balances[row["Envelope"]] = balance
        accounts.append(AccountBalance(name=row["Envelope"], balance_dollars=balance))
    return accounts


def main() -> None:
    """Main entry point for the envelope dashboard."""
    st.set_page_config(
        page_title="Envelope Engine",
        page_icon="✉️",
        layout="wide",
        initial_sidebar_state="expanded",
    )
    config.configure_logging()
    settings = config.load_settings()
    store = _store()
    _render_sidebar(store, settings)

    st.title("✉️ Envelope Engine")
    rules = store.list_rules()
    if not rules:
        st.info("No envelope rules yet. Import a budget CSV or run scripts/seed.py.")
        return

    today = st.date_input("Evaluate as of", value=date.today())
    health_tab, plans_tab, deposit_tab, rules_tab = st.tabs(["Health", "Fix plans", "Deposit preview", "Rules"])

    with health_tab:
        accounts = _balance_editor(rules)
        states = compute_envelope_states(accounts, rules)
        snapshots = {
            name: store.snapshots_for_date(due).get(name)
            for name, due in snapshot_dates_needed(states, today).items()
        }
        states, issues = detect_issues(states, today, settings.due_soon_window_days, snapshots)
        col1, col2, col3 = st.columns(3)
        col1.metric("Envelopes", len(states))
        col2.metric("Issues", len(issues))
        col3.metric("Overdue", sum(1 for issue in issues if issue.severity == 'error'))
        st.plotly_chart(envelope_health_chart(states), use_container_width=True)
        st.dataframe(states_frame(states), hide_index=True, use_container_width=True)

    with plans_tab:
        plans = generate_plans(
            issues,
            states,
            deposit_amount_assumption_dollars=settings.deposit_amount_assumption_dollars,
            routing_deposits=settings.routing_deposits,
        )
        if not plans:
            st.success("No funding issues found.")
        for plan in plans:
            with st.expander(f"{plan.issue.envelope_name}: {plan.issue.type} ({plan.issue.severity})"):
                st.markdown(f"```\n{render_plan(plan)}\n```")
                st.caption(escape_dollar_for_markdown(plan.issue.reason))

    with deposit_tab:
        amount = st.number_input(
            "Deposit amount",
            min_value=0.01,
            value=float(settings.deposit_amount_assumption_dollars),
            step=50.0,
        )
        plan = compute_deposit_plan(
            amount,
            store.list_baselines(),
            store.list_active_overrides(today),
            rules,
            catch_all_envelope_name=settings.catch_all_envelope_name,
            max_adjustment_per_deposit_dollars=settings.max_adjustment_per_deposit_dollars,
        )
        for warning in plan.warnings:
            st.warning(warning)
        st.plotly_chart(deposit_allocation_chart(plan), use_container_width=True)
        st.dataframe(deposit_plan_frame(plan), hide_index=True, use_container_width=True)

    with rules_tab:
        st.dataframe(store.rules_frame(), hide_index=True, use_container_width=True)
        st.subheader("Routing baselines")
        st.dataframe(store.baselines_frame(), hide_index=True, use_container_width=True)
        st.subheader("Decisions")
        st.dataframe(store.decisions_frame(), hide_index=True, use_container_width=True)


if __name__ == "__main__":
    main()
