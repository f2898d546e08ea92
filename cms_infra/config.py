from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    config_file: str = "config.yml"
    environment: str = "development"  # "development" renders console logs, anything else JSON
    log_level: str = "INFO"

    # Name of the self-mutating pipeline stack
    cicd_stack_name: str = "PAYLOADCMS-CICD-STACK"


settings = Settings()
