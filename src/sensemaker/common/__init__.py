"""Queue transport, retry routing and worker runtime shared by the sensemaker workers."""
