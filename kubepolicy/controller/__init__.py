"""Reconciliation loop and reconciler composition."""

from kubepolicy.controller.controller import Controller, ControllerState, ReconcileContext, Reconciler
from kubepolicy.controller.reconcilers import EventMatcher, Subscription, Workflow

__all__ = [
    "Controller",
    "ControllerState",
    "EventMatcher",
    "ReconcileContext",
    "Reconciler",
    "Subscription",
    "Workflow",
]
