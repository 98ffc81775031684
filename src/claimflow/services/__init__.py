"""claimflow services: stateful orchestration of the workflow engines."""
