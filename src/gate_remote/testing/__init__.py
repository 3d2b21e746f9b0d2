"""Public test-support utilities for gate-remote.

Re-exports test doubles and factories so that test suites can import
everything from a single ``gate_remote.testing`` namespace instead of
reaching into private modules.

Provided symbols:

- :class:`FakeClock` — settable wall clock for freshness/heartbeat tests.
- :class:`MockActuator` — in-memory actuator recording transitions.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — silent no-op MQTT adapter.
- :func:`make_settings` — factory for ``GateSettings`` without ``.env`` files.
"""

from gate_remote._actuator import MockActuator
from gate_remote._mqtt import MockMqttClient, NullMqttClient
from gate_remote.testing._clock import FakeClock
from gate_remote.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "MockActuator",
    "MockMqttClient",
    "NullMqttClient",
    "make_settings",
]
