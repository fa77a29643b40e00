"""Default configuration values for microdeploy."""

# Workspace
DEFAULT_WORKSPACE_DIR = "~/.microdeploy"
WORKSPACE_ENV_VAR = "MICRODEPLOY_HOME"
STATE_VERSION = "1.0"

# CPI release
DEFAULT_CPI_JOB_NAME = "cpi"
CPI_EXECUTABLE = "bin/cpi"

# Agent reachability
DEFAULT_AGENT_PING_TIMEOUT = 600.0  # seconds
DEFAULT_AGENT_PING_DELAY = 5.0  # seconds
AGENT_REQUEST_TIMEOUT = 30.0  # seconds
AGENT_TASK_POLL_DELAY = 0.5  # seconds
AGENT_RUNNING_TIMEOUT = 300.0  # seconds

# Registry server and SSH tunnel
DEFAULT_REGISTRY_PORT = 6901
DEFAULT_SSH_PORT = 22
SSH_TUNNEL_CONNECT_TIMEOUT = 10.0  # seconds
SSH_TUNNEL_RETRY_DELAY = 5.0  # seconds
SSH_TUNNEL_MAX_ATTEMPTS = 60
REGISTRY_STARTUP_TIMEOUT = 10.0  # seconds
