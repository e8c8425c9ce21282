"""
vsphere_telemetry

This package is a polling telemetry agent for vSphere inventories.

We keep modules small and well separated:
core contains shared data structures, configuration and errors
tags contains the tag index, the inclusion filter and the tagging client
performance contains the batched performance counter queries
inventory contains the per cycle inventory store and its plugins
output contains entities, metric sets and the builder writing into them
collect contains the per resource kind sample builders
agent contains the collection driver and the command line entry point
"""

__version__ = "0.3.0"
