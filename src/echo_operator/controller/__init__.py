"""Echo controller.

ARCHITECTURE
────────────
::

    triggers.py       WatchEvent → ObjectKey routing (Binding, for_resource, owns)
    queue.py          deduplicating work queue, per-key serialization
    state_machine.py  decide(): pure phase transitions
    reconciler.py     EchoReconciler: one pass, the only I/O
    manager.py        Controller: watch pumps + worker pool
"""

from echo_operator.controller.state_machine import Decision, decide, job_name_for

__all__ = ["Decision", "decide", "job_name_for"]
