from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "adrotator"
    app_env: str = "development"
    port: int = 3010
    bot_role: str = "app"

    tg_bot_token: str = ""

    database_url: str = "sqlite+aiosqlite:///./adrotator.db"

    coin_api_url: str = "http://localhost:8080"
    coin_api_timeout_ms: int = 12000
    ad_price: float = 0.001

    round_interval_ms: int = 900000
    payment_min_spacing_ms: int = 1000
    payment_idle_delay_ms: int = 1000
    payment_claim_ttl_ms: int = 60000

    cooldown_min_seconds: int = 300
    cooldown_max_seconds: int = 86400

    default_link_label: str = "Learn more"
    label_max_length: int = 12
    panel_text: str = "Tap Advertise to place a paid ad in this channel. You are charged per impression once the payment API confirms."
    panel_button_text: str = "Advertise"
    advertise_url: str = ""


settings = Settings()
