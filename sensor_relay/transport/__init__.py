"""Radio transport abstraction layer.

Provides ``RadioTransport`` ABC with two concrete implementations:

* ``SimulationTransport`` -- fixture-based, no hardware required.
* ``BleakTransport``      -- wraps bleak (host Bluetooth adapter, lazy-imported).
"""

from sensor_relay.transport.base import RadioTransport

__all__ = ["RadioTransport"]
