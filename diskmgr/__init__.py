"""
Disk lifecycle manager - persistence layer and operation engine.

Tracks storage devices across a fleet of hosts and the maintenance
operations daemons run on them:
- Process registry (daemon runs, liveness)
- Topology catalog (regions, storage details, devices)
- Device state machine
- Operation tracker and sub-operation log
- Repair tickets and crash recovery
"""
