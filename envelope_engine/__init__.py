"""Top-level package for the envelope engine.

The engine turns live envelope balances and per-envelope rules into funding
health, detected issues, A/B/C fix plans and exact deposit splits.  The
primary modules are:

* ``floors`` / ``issues`` – envelope state and issue detection
* ``plans`` / ``transfer_plans`` – RESTORE, ROUTING and STRUCTURAL options
* ``routing`` – basis-point split of an incoming deposit
* ``db`` / ``decisions`` / ``deposits`` – SQLite persistence and workflows
* ``visualization`` – Plotly figures; ``dashboard`` – the Streamlit app

To run the dashboard from the command line you can execute:

```bash
streamlit run envelope_engine/dashboard.py
```
"""

from .floors import compute_envelope_state, compute_envelope_states  # noqa: F401
from .issues import detect_issues  # noqa: F401
from .plans import generate_plans  # noqa: F401
from .routing import compute_deposit_plan  # noqa: F401
from .transfer_plans import generate_transfer_plans  # noqa: F401

__all__ = [
    "compute_envelope_state",
    "compute_envelope_states",
    "detect_issues",
    "generate_plans",
    "generate_transfer_plans",
    "compute_deposit_plan",
]
