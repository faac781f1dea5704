"""
Phoenix Systems

- process: worker pool supervision, health monitoring, event channel
- replication: artifact mirroring and the checksum registry
- watchdog: liveness probe, recovery procedure, standalone scripts
"""
