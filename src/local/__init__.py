"""
Local package for the workload supervisor.

This package provides the configuration, the error types, the liveness probe
client and the supervisor package itself.
"""
