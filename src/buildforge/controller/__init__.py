"""Reconcilers and the worker runtime that drives them."""

from buildforge.controller.build import BuildReconciler
from buildforge.controller.buildrun import BuildRunReconciler, job_name_for
from buildforge.controller.manager import ControllerManager
from buildforge.controller.queue import WorkQueue
from buildforge.controller.runtime import (
    Controller,
    ReconcileRequest,
    ReconcileResult,
    Reconciler,
)

__all__ = [
    "BuildReconciler",
    "BuildRunReconciler",
    "Controller",
    "ControllerManager",
    "ReconcileRequest",
    "ReconcileResult",
    "Reconciler",
    "WorkQueue",
    "job_name_for",
]
