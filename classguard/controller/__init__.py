"""Class deletion controller: queue, dispatcher, index, finalizers, reconciler."""

from classguard.controller.context import ControllerContext, build_context
from classguard.controller.controller import ClassController, WorkerPool
from classguard.controller.dispatcher import EventDispatcher
from classguard.controller.finalizers import FinalizerManager, FinalizerUpdateError
from classguard.controller.index import DependencyIndex
from classguard.controller.queue import WorkQueue
from classguard.controller.reconciler import ClassReconciler, Outcome

__all__ = [
    "ClassController",
    "ClassReconciler",
    "ControllerContext",
    "DependencyIndex",
    "EventDispatcher",
    "FinalizerManager",
    "FinalizerUpdateError",
    "Outcome",
    "WorkQueue",
    "WorkerPool",
    "build_context",
]
