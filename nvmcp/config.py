"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class NvmcpSettings(BaseSettings):
    home_dir: Path = Path.home() / ".nvmcp"
    debug: bool = False

    # Process management
    kill_timeout_s: float = 5.0  # SIGTERM -> SIGKILL escalation delay
    start_timeout_s: float = 30.0  # How long a pid-less "starting" record survives
    poll_interval_s: float = 0.2  # Exit watcher and kill fallback polling

    # Network
    request_timeout_s: float = 30.0
    clone_timeout_s: float = 120.0
    npm_registry_url: str = "https://registry.npmjs.org"
    github_api_url: str = "https://api.github.com"

    # Launch commands
    npx_command: str = "npx"
    node_command: str = "node"
    python_command: str = "python3"
    git_command: str = "git"
    remote_bridge_package: str = "@modelcontextprotocol/server-http"

    model_config = {"env_prefix": "NVMCP_"}

    @property
    def configs_dir(self) -> Path:
        return self.home_dir / "configs"

    @property
    def cache_dir(self) -> Path:
        return self.home_dir / "cache"

    @property
    def logs_dir(self) -> Path:
        return self.home_dir / "logs"

    @property
    def config_file(self) -> Path:
        return self.home_dir / "config.json"

    @property
    def active_tag_file(self) -> Path:
        return self.home_dir / "active-tag.json"

    @property
    def running_file(self) -> Path:
        return self.home_dir / "running.json"

    @property
    def master_key_file(self) -> Path:
        return self.home_dir / ".key"


settings = NvmcpSettings()
