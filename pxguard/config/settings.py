"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PXGUARD_", extra="ignore")

    app_name: str = "pxguard"
    log_level: str = "info"
    # 空串表示只输出到 stderr，不写日志文件
    log_file_path: str = "logs/pxguard.log"
    # 可选：启动时从 YAML 加载 enforcer 参数
    config_path: str = ""

    # {app_id} 会在运行时替换为小写的应用 ID
    backend_url_template: str = "https://sapi-{app_id}.perimeterx.net"
    backend_collector_url_template: str = "https://collector-{app_id}.perimeterx.net"
    backend_client_url: str = "https://client.perimeterx.net"
    captcha_script_url_template: str = "https://captcha.px-cdn.net/{app_id}/captcha.js"

    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20
    first_party_timeout_seconds: float = 4.0
    activities_timeout_seconds: float = 5.0
    activities_flush_retries: int = Field(default=1, ge=0, le=5)

    mobile_auth_header: str = "x-px-authorization"
    first_party_vid_cookie: str = "_pxvid"
    risk_cookie_name: str = "_px3"


settings = Settings()
