"""DepthGate: launch-time gate deciding between local and remote content.

The gate combines install attribution, a remote validation record and a
remote endpoint-resolution call into one navigation decision, under a hard
decision timeout and with state that survives relaunch.
"""

__version__ = "0.1.0"
