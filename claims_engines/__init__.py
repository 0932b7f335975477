"""
Pure calculation engines for the approval workflow.

Zero I/O, no clock reads.  Every engine takes its inputs (including
configuration and ``now``-derived values) as parameters.
"""

from claims_engines.authority import authority_denial, can_act_on
from claims_engines.risk import annotate_risk, risk_level_for
from claims_engines.routing import build_steps, build_workflow
from claims_engines.tracer import traced_engine

__all__ = [
    "annotate_risk",
    "authority_denial",
    "build_steps",
    "build_workflow",
    "can_act_on",
    "risk_level_for",
    "traced_engine",
]
