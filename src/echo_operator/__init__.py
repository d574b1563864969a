"""
echo-operator - reconciles ``Echo`` custom resources into batch Jobs.

An Echo declares a message; the operator runs one Job that prints it and
reports the outcome through the Echo's status (phase, message,
conditions).

Packages:
- echo_operator.api: Echo resource types (``echo.martineg.net/v1alpha1``)
- echo_operator.controller: state machine, reconcile driver, work queue,
  trigger bindings and the worker-pool controller
- echo_operator.store: resource store clients (in-memory, Kubernetes)
- echo_operator.runtimes: job backends (in-memory, Kubernetes)
- echo_operator.execution: backoff and deadline primitives
- echo_operator.core: errors, logging, settings
- echo_operator.cli: the ``echo-operator`` command
"""

__version__ = "0.1.0"
