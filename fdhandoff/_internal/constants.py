msg_default_buffer_size = 4096
"""Default capacity of the payload buffer holding metadata frames."""

oob_default_buffer_size = 4096
"""Default capacity of the ancillary buffer holding descriptors."""

header_size = 4
"""Size of the little-endian length prefix of each metadata frame."""

accept_retry_delay = 0.005
"""Seconds to wait before accepting again after a transient error."""

log_env_var = 'FDHANDOFF_LOG'
