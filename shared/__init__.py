"""
Shared utilities for disk manager processes.

- logging_config: common log format for the service and worker daemons
"""
