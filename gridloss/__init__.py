"""
Grid losses service package.

Modules:
- config: YAML configuration with FLISR_* environment overlay
- cache: local copy of the last good profile documents
- webapi: configuration API client
- profiles: topology and equipment documents
- loader: multi-endpoint profile bootstrap with cache fallback
- indexer: point/equipment lookup tables
- topology: switching graph and electrical state
- messages: RTDB bus records
- bus: ZeroMQ transport
- dispatcher: ingest -> topology update -> publish pipeline
- api: read-only diagnostics surface
- service: process lifecycle and command line
"""
